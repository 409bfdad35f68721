"""Contact harvesting engine: headless-browser crawling, form interaction and
network-response capture, run as queue-fed per-URL jobs."""

__version__ = "0.1.0"
