"""
cast_tidy/diagnostics.py
════════════════════════

Diagnostic model: locations, fix-its and the diagnostic record itself.

Diagnostics serialize to cppcheck's JSON addon protocol, to a GCC-style
one-liner, and their fix-its to clang's parseable form
(``fix-it:"file":{l:c-l:c}:"text"``).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class DiagnosticSeverity(Enum):
    """cppcheck-compatible severity levels."""
    ERROR = "error"
    WARNING = "warning"
    STYLE = "style"
    PERFORMANCE = "performance"
    PORTABILITY = "portability"
    INFORMATION = "information"


@dataclass(frozen=True)
class SourceLocation:
    """A specific point in source code (1-based line and column)."""
    file: str = ""
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"


@dataclass(frozen=True)
class SourceRange:
    """
    A half-open range ``[begin, end)`` in one file.

    ``offset``/``length`` count bytes of the file as stored on disk (line
    endings and multi-byte characters included).  They are ``None`` when
    the range was recovered from tokens alone and the file could not be
    read.
    """
    begin: SourceLocation
    end: SourceLocation
    offset: Optional[int] = None
    length: Optional[int] = None

    @property
    def file(self) -> str:
        return self.begin.file


@dataclass(frozen=True)
class FixIt:
    """Replace the text in ``range`` with ``replacement``."""
    range: SourceRange
    replacement: str

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "file": self.range.file,
            "begin": {"line": self.range.begin.line,
                      "column": self.range.begin.column},
            "end": {"line": self.range.end.line,
                    "column": self.range.end.column},
            "replacement": self.replacement,
        }
        if self.range.offset is not None:
            result["offset"] = self.range.offset
            result["length"] = self.range.length
        return result

    def to_parseable(self) -> str:
        """clang ``-fdiagnostics-parseable-fixits`` line."""
        b, e = self.range.begin, self.range.end
        text = json.dumps(self.replacement)
        return (
            f'fix-it:{json.dumps(self.range.file)}:'
            f'{{{b.line}:{b.column}-{e.line}:{e.column}}}:{text}'
        )


@dataclass(frozen=True)
class Diagnostic:
    """
    A single diagnostic finding.

    Attributes
    ----------
    error_id     : Unique identifier (e.g., "castMethodCall")
    message      : Human-readable description
    severity     : DiagnosticSeverity
    location     : Primary source location
    checker_name : Name of the checker that produced this
    addon        : Addon name for cppcheck protocol
    extra        : Additional context string
    fixits       : Proposed replacements
    evidence     : Machine-readable context for downstream tooling
    """
    error_id: str
    message: str
    severity: DiagnosticSeverity
    location: SourceLocation
    checker_name: str = ""
    addon: str = "cast-tidy"
    extra: str = ""
    fixits: Tuple[FixIt, ...] = ()
    evidence: Dict[str, Any] = field(default_factory=dict)

    def to_cppcheck_json(self) -> Dict[str, Any]:
        """Serialize to cppcheck's JSON addon output format."""
        result: Dict[str, Any] = {
            "file": self.location.file,
            "linenr": self.location.line,
            "column": self.location.column,
            "severity": self.severity.value,
            "message": self.message,
            "addon": self.addon,
            "errorId": self.error_id,
            "extra": self.extra,
        }
        if self.fixits:
            result["fixits"] = [f.to_dict() for f in self.fixits]
        return result

    def to_json_str(self) -> str:
        """Single-line JSON string for cppcheck addon stdout."""
        return json.dumps(self.to_cppcheck_json())

    def to_gcc_format(self) -> str:
        """GCC-style diagnostic string: file:line:col: severity: message."""
        sev = self.severity.value
        return f"{self.location}: {sev}: {self.message} [{self.error_id}]"

    @property
    def key(self) -> Tuple[Any, ...]:
        """Identity used to drop repeats across preprocessor configurations."""
        return (
            self.error_id,
            self.location,
            tuple(f.replacement for f in self.fixits),
        )


__all__ = [
    "DiagnosticSeverity",
    "SourceLocation",
    "SourceRange",
    "FixIt",
    "Diagnostic",
]
