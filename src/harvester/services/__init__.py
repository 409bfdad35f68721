"""
FastAPI services: the scrape worker and the dashboard API.
"""
