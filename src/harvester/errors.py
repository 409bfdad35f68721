"""Exception taxonomy for the harvesting engine.

Authentication and payload errors stop a job before any browser resource is
allocated. Navigation and interaction errors fail the crawl but the job is
still acknowledged. Extraction errors never leave the extractor. Persistence
errors are logged and absorbed by the job executor.
"""


class HarvesterError(Exception):
    """Base exception for harvester errors."""

    pass


class AuthenticationError(HarvesterError):
    """Raised when a job's signature is missing or does not verify."""

    pass


class PayloadError(HarvesterError):
    """Raised when a verified job body cannot be parsed."""

    pass


class NavigationError(HarvesterError):
    """Raised when the browser cannot load a page."""

    pass


class InteractionError(HarvesterError):
    """Raised when a form field or submit control cannot be operated."""

    pass


class ExtractionError(HarvesterError):
    """Raised for a malformed record inside a structured payload."""

    pass


class PersistenceError(HarvesterError):
    """Raised when a job result cannot be written to the store."""

    pass
