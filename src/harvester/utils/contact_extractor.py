"""
Contact Extractor

Turns rendered page markup or a captured JSON response into contacts. Two
strategies are provided:

- page text: email patterns in text nodes, ``mailto:`` links and a handful of
  markup attributes, with the nearest heading/label used to guess a name and
  job title;
- structured payload: listing records from a captured API response, mapped
  through explicit field-name candidates per attribute.

Neither strategy raises on bad input. A malformed payload or record is logged
and skipped so one bad record never aborts an otherwise good crawl.
"""

import json
import re
import urllib.parse
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from ..errors import ExtractionError
from ..logging_config import setup_logging
from ..models.scrape_models import Contact

# Create module-specific logger
logger = setup_logging("contact_extractor")

PAGE_TEXT_ORIGIN = "page text"
PAYLOAD_ORIGIN = "captured API response"

EMAIL_REGEX = re.compile(r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b")
PHONE_REGEX = re.compile(r"(?:\+\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}")
NAME_REGEX = re.compile(r"\b([A-Z][a-z'\-]+(?: [A-Z]\.)?(?: [A-Z][a-z'\-]+){1,2})\b")

TITLE_PATTERNS = (
    re.compile(r"\b(Figure Skating Director|Hockey Director|Program Director|Athletic Director)\b", re.I),
    re.compile(r"\b(Head Coach|Assistant Coach|Coach|Director|Manager|Coordinator|Instructor|Trainer)\b", re.I),
    re.compile(r"\b(Vice President|President|CEO|Owner|Founder)\b", re.I),
)

_OBFUSCATED = (
    (re.compile(r"\s*[\[\(\{]\s*at\s*[\]\)\}]\s*", re.I), "@"),
    (re.compile(r"\s*[\[\(\{]\s*dot\s*[\]\)\}]\s*", re.I), "."),
)

_BAD_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".css", ".js")
_BAD_DOMAINS = ("sentry.io", "wixpress.com", "wix.com", "example.com")
_HASH_LOCAL_PART = re.compile(r"^[a-f0-9]{24,}@")
_VERSIONED_PACKAGE = re.compile(r"^[a-z0-9_\-]+@\d+(\.\d+)*(\.[a-z]+)?$")

# Markup attributes that sometimes carry an address outside the visible text
_EMAIL_ATTRIBUTES = ("data-email", "data-mail", "content", "value", "title", "aria-label")

_CONTEXT_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6", "strong", "b", "label", "dt", "th"]
_BLOCK_TAGS = ["p", "li", "td", "tr", "dd", "address", "article", "section", "div"]


def _deobfuscate(text: str) -> str:
    for pattern, replacement in _OBFUSCATED:
        text = pattern.sub(replacement, text)
    return text


def _is_junk_email(email: str) -> bool:
    if any(email.endswith(suffix) for suffix in _BAD_SUFFIXES):
        return True
    domain = email.rpartition("@")[2]
    if domain.startswith("sentry"):
        return True
    # Exact domain or one of its subdomains
    if any(domain == bad or domain.endswith("." + bad) for bad in _BAD_DOMAINS):
        return True
    return bool(_HASH_LOCAL_PART.match(email) or _VERSIONED_PACKAGE.match(email))


def normalize_email(raw: Any) -> Optional[str]:
    """Return the lower-cased address, or None when `raw` is not a usable email."""
    if not isinstance(raw, str):
        return None
    candidate = urllib.parse.unquote(raw).replace("%20", "")
    candidate = candidate.strip().strip(" \t\r\n\"'<>[](){},;:").rstrip(".").lower()
    if not EMAIL_REGEX.fullmatch(candidate):
        return None
    if _is_junk_email(candidate):
        return None
    return candidate


def normalize_website(raw: str) -> str:
    """Blank out websites that are only a scheme, e.g. ``"http://"``."""
    website = (raw or "").strip()
    if website.lower() in ("http://", "https://", "http:", "https:"):
        return ""
    return website


def merge_contacts(merged: Dict[str, Contact], contacts: Iterable[Contact]) -> int:
    """Merge into `merged` keyed by email; an existing entry is never replaced.

    Returns the number of contacts that were new.
    """
    added = 0
    for contact in contacts:
        key = contact.email.lower()
        if key not in merged:
            merged[key] = contact
            added += 1
    return added


class PayloadSchema(str, Enum):
    """Known shapes of captured listing payloads."""

    PROGRAM_LISTING = "program_listing"
    RECORD_LIST = "record_list"
    GENERIC = "generic"


# Candidate field names per attribute, matched case-insensitively in order
FIELD_CANDIDATES: Dict[str, Tuple[str, ...]] = {
    "email": ("OrganizationEmail", "Email", "ContactEmail", "EmailAddress"),
    "name": (
        "OrganizationName", "FacilityName", "Facility", "ProgramName",
        "Name", "Organization", "Title",
    ),
    "phone": ("OrganizationPhoneNumber", "Phone", "PhoneNumber", "Telephone"),
    "website": ("Website", "Url", "Web", "Link"),
    "city": ("City",),
    "state": ("StateCode", "State"),
}

# Envelope keys that hold the record list of a listing response
ENVELOPE_KEYS = ("programs", "results", "items", "records", "data")


def detect_schema(data: Any) -> PayloadSchema:
    if isinstance(data, dict):
        if isinstance(data.get("programs"), list):
            return PayloadSchema.PROGRAM_LISTING
        if any(isinstance(data.get(key), list) for key in ENVELOPE_KEYS):
            return PayloadSchema.RECORD_LIST
        return PayloadSchema.GENERIC
    if isinstance(data, list):
        return PayloadSchema.RECORD_LIST
    raise ExtractionError(f"Unsupported payload type: {type(data).__name__}")


def _records_for(data: Any, schema: PayloadSchema) -> List[Any]:
    if schema is PayloadSchema.PROGRAM_LISTING:
        if not isinstance(data, dict) or not isinstance(data.get("programs"), list):
            raise ExtractionError("Program listing payload has no 'programs' array")
        return data["programs"]
    if schema is PayloadSchema.RECORD_LIST:
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in ENVELOPE_KEYS:
                if isinstance(data.get(key), list):
                    return data[key]
        raise ExtractionError("Record list payload has no record array")
    if not isinstance(data, dict):
        raise ExtractionError("Generic payload must be a JSON object")
    return [data]


def _pick(record: Dict[str, Any], attribute: str) -> str:
    for candidate in FIELD_CANDIDATES[attribute]:
        value = record.get(candidate.lower())
        if value is None or isinstance(value, (dict, list)):
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def listing_view(body: Union[str, bytes], schema_hint: str = "auto") -> List[Dict[str, str]]:
    """Flatten every record of a listing payload, including those without an email.

    Returns an empty list when the payload cannot be read.
    """
    try:
        data = json.loads(body)
        schema = detect_schema(data) if schema_hint == "auto" else PayloadSchema(schema_hint)
        records = _records_for(data, schema)
    except (ValueError, ExtractionError) as e:
        logger.warning("Listing payload unreadable", extra={"error": str(e)})
        return []

    view: List[Dict[str, str]] = []
    for record in records:
        if not isinstance(record, dict):
            continue
        lowered = {str(key).lower(): value for key, value in record.items()}
        row = {attribute: _pick(lowered, attribute) for attribute in FIELD_CANDIDATES}
        row["website"] = normalize_website(row["website"])
        view.append(row)
    return view


class ContactExtractor:
    """Extracts contacts from rendered pages and captured payloads."""

    def extract(
        self,
        page_content: str,
        source_url: str,
        include_phone_numbers: bool = False,
    ) -> List[Contact]:
        """Extract contacts from rendered HTML, in document order."""
        if not page_content:
            return []
        try:
            soup = BeautifulSoup(page_content, "html.parser")
        except Exception as e:
            logger.warning(
                "Could not parse page content",
                extra={"source_url": source_url, "error": str(e)},
            )
            return []

        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()

        found: Dict[str, Contact] = {}

        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            if href.lower().startswith("mailto:"):
                email = normalize_email(href[7:].split("?")[0])
                if email:
                    self._record(found, email, anchor, source_url, include_phone_numbers)

        for node in soup.find_all(string=True):
            if isinstance(node, Comment):
                continue
            for match in EMAIL_REGEX.finditer(_deobfuscate(str(node))):
                email = normalize_email(match.group(0))
                if email:
                    self._record(found, email, node, source_url, include_phone_numbers)

        for tag in soup.find_all(True):
            for attribute in _EMAIL_ATTRIBUTES:
                value = tag.get(attribute)
                if not isinstance(value, str) or "@" not in value:
                    continue
                for match in EMAIL_REGEX.finditer(value):
                    email = normalize_email(match.group(0))
                    if email:
                        self._record(found, email, tag, source_url, include_phone_numbers)

        return list(found.values())

    def _record(
        self,
        found: Dict[str, Contact],
        email: str,
        element: Union[Tag, NavigableString],
        source_url: str,
        include_phone_numbers: bool,
    ) -> None:
        if email in found:
            return
        name, title, phone = self._context_for(element, email, include_phone_numbers)
        found[email] = Contact(
            email=email,
            name=name,
            title=title,
            phone=phone,
            source_url=source_url,
            origin_label=PAGE_TEXT_ORIGIN,
        )

    def _context_for(
        self,
        element: Union[Tag, NavigableString],
        email: str,
        include_phone_numbers: bool,
    ) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        """Best-effort name, title and phone from the markup around an email."""
        container = element if isinstance(element, Tag) else element.parent
        if container is None:
            return None, None, None

        heading = container.find_previous(_CONTEXT_TAGS)
        label_text = heading.get_text(" ", strip=True) if heading else ""
        block = container.find_parent(_BLOCK_TAGS) or container
        block_text = block.get_text(" ", strip=True)
        # Only the text leading up to the address is treated as describing it
        lead_text = re.split(re.escape(email), block_text, maxsplit=1, flags=re.I)[0]

        name = None
        for text in (label_text, lead_text):
            if not text or "@" in text:
                continue
            match = NAME_REGEX.search(text)
            if match and not self._title_in(match.group(1)):
                name = match.group(1)
                break

        title = self._title_in(f"{label_text} {block_text}")

        phone = None
        if include_phone_numbers:
            phone_match = PHONE_REGEX.search(block_text)
            if phone_match:
                phone = phone_match.group(0).strip()

        return name, title, phone

    @staticmethod
    def _title_in(text: str) -> Optional[str]:
        for pattern in TITLE_PATTERNS:
            match = pattern.search(text)
            if match:
                return match.group(1)
        return None

    def extract_from_payload(
        self,
        body: Union[str, bytes, Dict[str, Any], List[Any]],
        schema_hint: str = "auto",
        source_url: str = "",
    ) -> List[Contact]:
        """Map a captured listing payload onto contacts.

        `schema_hint` is ``"auto"`` or a :class:`PayloadSchema` value. Records
        without an email are dropped; malformed records are logged and skipped.
        """
        try:
            data = json.loads(body) if isinstance(body, (str, bytes)) else body
            schema = detect_schema(data) if schema_hint == "auto" else PayloadSchema(schema_hint)
            records = _records_for(data, schema)
        except (ValueError, ExtractionError) as e:
            logger.warning(
                "Skipping unreadable payload",
                extra={"source_url": source_url, "schema_hint": schema_hint, "error": str(e)},
            )
            return []

        contacts: Dict[str, Contact] = {}
        skipped = 0
        for index, record in enumerate(records):
            try:
                contact = self._map_record(record, schema, source_url)
            except ExtractionError as e:
                skipped += 1
                logger.warning(
                    "Skipping malformed record",
                    extra={"source_url": source_url, "record_index": index, "error": str(e)},
                )
                continue
            if contact is not None:
                merge_contacts(contacts, [contact])

        logger.debug(
            "Payload extraction finished",
            extra={
                "source_url": source_url,
                "schema": schema.value,
                "records": len(records),
                "contacts": len(contacts),
                "skipped": skipped,
            },
        )
        return list(contacts.values())

    def _map_record(self, record: Any, schema: PayloadSchema, source_url: str) -> Optional[Contact]:
        if not isinstance(record, dict):
            raise ExtractionError(f"Record is {type(record).__name__}, expected an object")

        lowered = {str(key).lower(): value for key, value in record.items()}
        raw_email = _pick(lowered, "email")
        if not raw_email:
            return None
        email = normalize_email(raw_email)
        if email is None:
            raise ExtractionError(f"Invalid email value: {raw_email!r}")

        name = _pick(lowered, "name")
        title = None
        if schema is PayloadSchema.PROGRAM_LISTING:
            name = name or "Unknown Program"
            city, state = _pick(lowered, "city"), _pick(lowered, "state")
            if city and state:
                name = f"{name} ({city}, {state})"
            title = "Organization"

        return Contact(
            email=email,
            name=name or None,
            title=title,
            phone=_pick(lowered, "phone") or None,
            url=normalize_website(_pick(lowered, "website")),
            source_url=source_url,
            origin_label=PAYLOAD_ORIGIN,
        )
