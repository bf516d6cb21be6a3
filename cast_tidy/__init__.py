"""
cast_tidy: method-style cast rewriting for Cppcheck dumps
=========================================================

Finds ``obj.cast<T>()``, ``ptr->dyn_cast<T>()``, ``obj.isa<A, B>()`` and
``obj.dyn_cast_or_null<T>()`` calls on MLIR/LLVM types and proposes the
free-function spelling (``cast<T>(obj)``, ``dyn_cast<T>(*ptr)``, ...).
``llvm::PointerUnion`` receivers get ``llvm::dyn_cast_if_present``.

Core modules
------------
catalog
    Type families, cast operations and the ordered matcher table.
spelling
    Grammar reducing spelled C++ types to nominal names.
rewrite
    The text transformation from one call site to its replacement.
host
    cppcheck dump adapter: member calls, class hierarchy, source text.
diagnostics
    Diagnostic, location and fix-it records.
checker
    Checker lifecycle, runner and the addon/CLI entry point.

Quick start
-----------
>>> from cast_tidy import CallSite, POINTER_UNION_FAMILY, rewrite_call
>>> site = CallSite("pu.dyn_cast<Foo>()", "dyn_cast", False, POINTER_UNION_FAMILY)
>>> rewrite_call(site).text
'llvm::dyn_cast_if_present<Foo>(pu)'
"""

from __future__ import annotations

import logging
from typing import List

__version__ = "0.1.0"
__license__ = "MIT"

_log = logging.getLogger(__name__)
_log.addHandler(logging.NullHandler())

from cast_tidy.errors import (  # noqa: E402
    CastTidyError,
    CatalogError,
    InternalMatchError,
)
from cast_tidy.catalog import (  # noqa: E402
    ATTRIBUTE_FAMILY,
    BUILTIN_FAMILIES,
    FOLD_RESULT_FAMILY,
    OPERATION_FAMILY,
    POINTER_UNION_FAMILY,
    TYPE_FAMILY,
    VALUE_FAMILY,
    CatalogEntry,
    MemberCall,
    OperationName,
    PatternCatalog,
    TypeFamily,
    TypeRef,
    default_catalog,
)
from cast_tidy.diagnostics import (  # noqa: E402
    Diagnostic,
    DiagnosticSeverity,
    FixIt,
    SourceLocation,
    SourceRange,
)
from cast_tidy.rewrite import (  # noqa: E402
    CallSite,
    Rewrite,
    RewriteOptions,
    rewrite_call,
)
from cast_tidy.host import ClassHierarchy, SourceCache  # noqa: E402
from cast_tidy.checker import (  # noqa: E402
    CastCallChecker,
    CheckerRunner,
    CheckerRunResults,
    run_addon,
)

__all__: List[str] = [
    "__version__",
    "CastTidyError",
    "CatalogError",
    "InternalMatchError",
    "ATTRIBUTE_FAMILY",
    "BUILTIN_FAMILIES",
    "FOLD_RESULT_FAMILY",
    "OPERATION_FAMILY",
    "POINTER_UNION_FAMILY",
    "TYPE_FAMILY",
    "VALUE_FAMILY",
    "CatalogEntry",
    "MemberCall",
    "OperationName",
    "PatternCatalog",
    "TypeFamily",
    "TypeRef",
    "default_catalog",
    "Diagnostic",
    "DiagnosticSeverity",
    "FixIt",
    "SourceLocation",
    "SourceRange",
    "CallSite",
    "Rewrite",
    "RewriteOptions",
    "rewrite_call",
    "ClassHierarchy",
    "SourceCache",
    "CastCallChecker",
    "CheckerRunner",
    "CheckerRunResults",
    "run_addon",
]
