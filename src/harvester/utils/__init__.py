"""
Crawl engine: browser session, form interaction, network capture, contact
extraction and the crawl orchestrator that ties them together.
"""

from .browser import BrowserSession
from .contact_extractor import ContactExtractor, merge_contacts
from .form_interaction import FormInteractionEngine
from .network_capture import NetworkCapture
from .web_crawler import CrawlOrchestrator

__all__ = [
    "BrowserSession",
    "ContactExtractor",
    "CrawlOrchestrator",
    "FormInteractionEngine",
    "NetworkCapture",
    "merge_contacts",
]
