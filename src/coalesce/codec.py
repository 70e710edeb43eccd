"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Result payload codecs.
"""

from __future__ import annotations

import json
from typing import Any, Protocol

from .errors import CorruptedRecordError


class ResultCodec(Protocol):
    """
    Serializer used for result records.

    `encode` raises ``ValueError`` for values it cannot represent faithfully;
    waiters must decode exactly what the owner computed.
    """

    def encode(self, value: Any) -> str: ...

    def decode(self, raw: str | bytes) -> Any: ...


class JsonResultCodec:
    """JSON codec; default for result records. Accepts plain JSON types only."""

    def __init__(self, *, ensure_ascii: bool = True) -> None:
        self._ensure_ascii = ensure_ascii

    def encode(self, value: Any) -> str:
        try:
            return json.dumps(value, ensure_ascii=self._ensure_ascii)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Result is not JSON serializable: {exc}") from exc

    def decode(self, raw: str | bytes) -> Any:
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            return json.loads(raw)
        except (UnicodeDecodeError, ValueError) as exc:
            raise CorruptedRecordError(f"Invalid result payload: {exc}") from exc
