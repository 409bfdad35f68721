"""Message signing with a current/next key pair so keys can be rotated."""

import hashlib
import hmac
from dataclasses import dataclass
from typing import Any

from .errors import AuthenticationError


def sign_body(body: bytes, key: str) -> str:
    """Hex HMAC-SHA256 of the raw message body."""
    return hmac.new(key.encode("utf-8"), body, hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class SigningKeys:
    """Keys a worker accepts. Publishers sign with `current`.

    During rotation the new key is deployed as `next` first, so messages
    signed with either key verify until the swap is complete.
    """

    current: str
    next: str = ""

    @classmethod
    def from_settings(cls, settings) -> "SigningKeys":
        return cls(current=settings.current_signing_key, next=settings.next_signing_key)

    @property
    def configured(self) -> bool:
        return bool(self.current)

    def sign(self, body: bytes) -> str:
        return sign_body(body, self.current)

    def verify(self, body: bytes, signature: Any) -> None:
        """Raise AuthenticationError unless `signature` matches either key.

        Header values are untyped; anything other than a string is rejected.
        """
        if not self.configured:
            raise AuthenticationError("No signing key configured")
        if not signature:
            raise AuthenticationError("Missing signature")
        if not isinstance(signature, str):
            raise AuthenticationError("Invalid signature")
        # Compare bytes; compare_digest rejects non-ASCII str operands
        provided = signature.strip().lower().encode("utf-8", "surrogateescape")
        for key in (self.current, self.next):
            if key and hmac.compare_digest(sign_body(body, key).encode("ascii"), provided):
                return
        raise AuthenticationError("Invalid signature")
