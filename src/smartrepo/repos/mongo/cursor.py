"""
Cursor codec that understands ObjectId anchors.
"""

from typing import Any

from bson import ObjectId
from bson.errors import InvalidId

from smartrepo.pagination.cursor import CursorCodec


class MongoCursorCodec(CursorCodec):
    """CursorCodec with an "o" tag for ObjectId ids."""

    def _encode_value(self, value: Any) -> tuple[str, str]:
        if isinstance(value, ObjectId):
            return "o", str(value)
        return super()._encode_value(value)

    def _decode_value(self, tag: str, payload: str) -> Any:
        if tag == "o":
            try:
                return ObjectId(payload)
            except InvalidId as e:
                raise ValueError(f"Invalid ObjectId: {payload}") from e
        return super()._decode_value(tag, payload)
