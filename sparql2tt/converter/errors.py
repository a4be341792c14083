"""
Error kinds raised while converting SPARQL into ThingTalk.

Every failure aborts the whole conversion; no partial program is returned.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Optional


class ErrorCode(IntEnum):
    """Conversion error codes"""
    UNSUPPORTED_CONSTRUCT = 1
    AMBIGUOUS_SUBJECT = 2
    CROSS_TABLE_UNSUPPORTED = 3
    UNRESOLVED_ENTITY_LABEL = 4
    # Never raised by the converter; batch drivers use it to classify drops
    # that happened while the knowledge base was failing.
    KNOWLEDGE_BASE_UNAVAILABLE = 5


class ConversionError(Exception):
    """Base class for all conversion failures"""

    def __init__(self, code: ErrorCode, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code.name.lower()}: {message}")


class UnsupportedConstructError(ConversionError):
    """A clause, filter or having shape the converter does not model."""

    def __init__(self, message: str, clause: Optional[Any] = None):
        self.clause = clause
        if clause is not None:
            message = f"{message} ({clause!r})"
        super().__init__(ErrorCode.UNSUPPORTED_CONSTRUCT, message)


class AmbiguousSubjectError(ConversionError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.AMBIGUOUS_SUBJECT, message)


class CrossTableUnsupportedError(ConversionError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.CROSS_TABLE_UNSUPPORTED, message)


class UnresolvedEntityLabelError(ConversionError):
    def __init__(self, entity: str):
        self.entity = entity
        super().__init__(ErrorCode.UNRESOLVED_ENTITY_LABEL, f"no label found for {entity}")


__all__ = [
    "ErrorCode",
    "ConversionError",
    "UnsupportedConstructError",
    "AmbiguousSubjectError",
    "CrossTableUnsupportedError",
    "UnresolvedEntityLabelError",
]
