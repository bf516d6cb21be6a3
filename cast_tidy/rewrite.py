"""
cast_tidy/rewrite.py
════════════════════

The rewrite engine: one matched call site in, one replacement text out.

There is no unparser to lean on, so the replacement is rebuilt from the
call's own source text.  The order of the steps matters::

    x.template isa<Foo, Bar>()
    │
    │ 1. open call text         x.template isa<Foo, Bar>(
    │ 2. split                  "x"  |  "template isa<Foo, Bar>("
    │ 3. normalise operation    isa<Foo, Bar>
    │ 4. resolve name           isa<Foo, Bar>        (maybe renamed/qualified)
    │ 5. resolve receiver       x                    (*x for ->)
    ▼ 6. compose                isa<Foo, Bar>(x)

The engine is total: it always returns a ``Rewrite``, even when the split
heuristics pick the wrong place (e.g. a ``.`` inside a string literal in the
receiver).  Reviewing the proposed fix is left to the user.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple

from cast_tidy.catalog import OperationName, TypeFamily
from cast_tidy.diagnostics import SourceRange

logger = logging.getLogger(__name__)

_TEMPLATE_KEYWORD = re.compile(r"^template\b\s*")
_DYN_CAST_PREFIX = re.compile(r"^dyn_cast(?:_or_null)?(?![\w])")
_OR_NULL_PREFIX = re.compile(r"^dyn_cast_or_null(?![\w])")
_VARIADIC_ISA = {
    False: re.compile(r"\.(\s*(?:template\b\s*)?isa\b)"),
    True: re.compile(r"->(\s*(?:template\b\s*)?isa\b)"),
}
_ELLIPSIS = "..."


@dataclass(frozen=True)
class RewriteOptions:
    """
    Knobs for name resolution.

    qualifier       : namespace prefix for qualified names
    permissive_name : the null-tolerant variant used for pointer unions
    qualify_all     : qualify names that were not renamed as well
    self_reference  : receiver used for calls on an implicit ``this``
    """
    qualifier: str = "llvm::"
    permissive_name: str = "dyn_cast_if_present"
    qualify_all: bool = False
    self_reference: str = "*this"

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "RewriteOptions":
        """Pick the known keys out of a checker options dict."""
        defaults = cls()
        return cls(
            qualifier=str(options.get("qualifier", defaults.qualifier)),
            permissive_name=str(
                options.get("permissive_name", defaults.permissive_name)
            ),
            qualify_all=bool(options.get("qualify_all", defaults.qualify_all)),
            self_reference=str(
                options.get("self_reference", defaults.self_reference)
            ),
        )


@dataclass(frozen=True)
class CallSite:
    """
    One matched call, as handed to the engine.

    ``text`` is the full source text of the call expression, closing
    parenthesis included.  ``range`` locates it for reporting.
    """
    text: str
    member: str
    is_arrow: bool
    family: TypeFamily
    range: Optional[SourceRange] = field(default=None, compare=False)


@dataclass(frozen=True)
class Rewrite:
    """The engine's output for one call site."""
    receiver: str
    name: str
    text: str
    implicit_receiver: bool = False


def open_call_text(text: str) -> str:
    """Drop the closing parenthesis: ``x.cast<T>()`` → ``x.cast<T>(``."""
    text = text.rstrip()
    if text.endswith(")"):
        text = text[:-1]
    return text


def split_call(text: str, is_arrow: bool, member: str) -> Tuple[str, str]:
    """
    Split open call text into (receiver, operation part).

    The split is on the last ``.`` or ``->``.  The variadic ``isa`` form
    (an ellipsis somewhere in the call) splits on the compound ``.isa`` /
    ``->isa`` token instead, because the ellipsis itself is made of dots.
    Without any access token the receiver is the whole text and the
    operation part is empty.
    """
    if member == OperationName.ISA.value and _ELLIPSIS in text:
        found = list(_VARIADIC_ISA[is_arrow].finditer(text))
        if found:
            last = found[-1]
            return text[:last.start()], text[last.start(1):]
    token = "->" if is_arrow else "."
    receiver, sep, operation = text.rpartition(token)
    if not sep:
        return text, ""
    return receiver, operation


def normalize_operation(operation: str) -> str:
    """Strip a leading ``template`` keyword, whitespace and the ``(``."""
    operation = _TEMPLATE_KEYWORD.sub("", operation.strip()).strip()
    if operation.endswith("("):
        operation = operation[:-1].rstrip()
    return operation


def resolve_name(operation: str, family: TypeFamily,
                 options: RewriteOptions) -> str:
    """Work out the free function to call, renamed and qualified as needed."""
    if family.permissive and _DYN_CAST_PREFIX.match(operation):
        renamed = _DYN_CAST_PREFIX.sub(options.permissive_name, operation, 1)
        return options.qualifier + renamed
    if _OR_NULL_PREFIX.match(operation):
        renamed = _OR_NULL_PREFIX.sub(options.permissive_name, operation, 1)
        return options.qualifier + renamed
    if not operation:
        # implicit ``this``: the receiver text already holds the callee
        return options.qualifier if options.qualify_all else ""
    if options.qualify_all:
        return options.qualifier + operation
    return operation


def resolve_receiver(receiver: str, operation: str, is_arrow: bool,
                     options: RewriteOptions) -> str:
    """Dereference arrow receivers; implicit ``this`` gets the sentinel."""
    if not is_arrow:
        return receiver
    if not operation:
        return receiver + options.self_reference
    return "*" + receiver


def rewrite_call(site: CallSite,
                 options: Optional[RewriteOptions] = None) -> Rewrite:
    """Derive the free-function replacement for ``site``."""
    options = options or RewriteOptions()
    receiver, operation = split_call(
        open_call_text(site.text), site.is_arrow, site.member
    )
    logger.debug("Split %r into receiver %r and operation %r",
                 site.text, receiver, operation)
    operation = normalize_operation(operation)
    name = resolve_name(operation, site.family, options)
    receiver = resolve_receiver(receiver, operation, site.is_arrow, options)
    if operation:
        return Rewrite(receiver, name, f"{name}({receiver})")
    return Rewrite(receiver, name, f"{name}{receiver})", implicit_receiver=True)


__all__ = [
    "RewriteOptions",
    "CallSite",
    "Rewrite",
    "open_call_text",
    "split_call",
    "normalize_operation",
    "resolve_name",
    "resolve_receiver",
    "rewrite_call",
]
