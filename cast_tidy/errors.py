"""
cast_tidy/errors.py
═══════════════════

Exception hierarchy for cast-tidy.

::

    CastTidyError (base)
    ├── CatalogError          - invalid catalog registration
    └── InternalMatchError    - a matcher fired but the host could not
                                supply the bindings the engine needs

Only ``InternalMatchError`` is expected at run time; the checker turns it
into a ``castTidyInternalError`` diagnostic for the affected call site.
"""

from __future__ import annotations

from typing import Any, Optional


class CastTidyError(Exception):
    """Base exception for all cast-tidy errors."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class CatalogError(CastTidyError):
    """A type family or catalog entry was declared incorrectly."""


class InternalMatchError(CastTidyError):
    """
    A catalog entry fired but the member-access binding is unusable.

    Raised for one call site only. ``token`` is the host token the match was
    attempted on, kept so the checker can still point at a location.
    """

    def __init__(
        self,
        message: str,
        token: Any = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message, cause)
        self.token = token


__all__ = [
    "CastTidyError",
    "CatalogError",
    "InternalMatchError",
]
