"""
Opaque pagination cursors.

A cursor identifies the anchor row of the previous page by its unique id
and nothing else. Sort-field values are always re-read from the store when
the cursor is resolved, so a stale or edited token can never shift the page
boundary.

Token layout: base64url("<tag>:<payload>") without padding, optionally
followed by ".<signature>" when the codec has a secret.
"""

import base64
import binascii
import hashlib
import hmac
from typing import Any

from smartrepo.core.errors import InvalidCursorError

SIGNATURE_LENGTH = 16


class CursorCodec:
    """
    Encodes and decodes anchor ids as opaque, URL-safe cursor strings.

    Supported id types are tagged so that decoding restores the same type:
    "s" for strings and "i" for integers. Subclasses can register additional
    store-native id types by overriding _encode_value / _decode_value.
    """

    def __init__(self, secret: str | None = None) -> None:
        """
        Initialize the codec.

        Args:
            secret: Optional key for signing cursors (rejects edited tokens)
        """
        self.secret = secret

    def encode(self, anchor_id: Any) -> str:
        """Encode an anchor id into a cursor token."""
        tag, payload = self._encode_value(anchor_id)
        raw = f"{tag}:{payload}".encode()
        token = base64.urlsafe_b64encode(raw).decode().rstrip("=")
        if self.secret:
            token = f"{token}.{self._sign(token)}"
        return token

    def decode(self, token: str) -> Any:
        """
        Decode a cursor token back into an anchor id.

        Raises:
            InvalidCursorError: if the token is malformed, carries an unknown
                type tag or fails signature verification
        """
        if not isinstance(token, str) or not token:
            raise InvalidCursorError()

        body = token
        if self.secret:
            body, _, signature = token.partition(".")
            if not signature or not hmac.compare_digest(signature, self._sign(body)):
                raise InvalidCursorError()

        try:
            padded = body + "=" * (-len(body) % 4)
            raw = base64.urlsafe_b64decode(padded.encode()).decode()
            tag, payload = raw.split(":", 1)
            return self._decode_value(tag, payload)
        except (ValueError, binascii.Error, UnicodeDecodeError) as e:
            raise InvalidCursorError() from e

    def _encode_value(self, value: Any) -> tuple[str, str]:
        if isinstance(value, str):
            return "s", value
        if isinstance(value, int) and not isinstance(value, bool):
            return "i", str(value)
        raise TypeError(f"Unsupported cursor id type: {type(value).__name__}")

    def _decode_value(self, tag: str, payload: str) -> Any:
        if tag == "s":
            return payload
        if tag == "i":
            return int(payload)
        raise ValueError(f"Unknown cursor tag: {tag}")

    def _sign(self, body: str) -> str:
        digest = hmac.new(
            (self.secret or "").encode(), body.encode(), hashlib.sha256
        ).hexdigest()
        return digest[:SIGNATURE_LENGTH]
