"""
cast_tidy/spelling.py
═════════════════════

Parsing of spelled C++ type names.

Receiver types reach the catalog as text: re-joined declaration tokens,
``originalTypeName`` aliases, base-specifiers from class heads.  Family
membership compares *nominal* names, so every spelling is reduced first:

    const ::llvm::PointerUnion<A *, B *> &   →   llvm::PointerUnion
    typename T::type                          →   T::type
    mlir::Op<ConstantOp>                      →   mlir::Op

The grammar is deliberately loose.  It only has to find template argument
lists (balanced ``<``/``>``, nested) and the words and ``::`` separators
outside them; declarators and other punctuation are recognised and dropped.
"""

from __future__ import annotations

import functools
import logging
import re
from typing import List

from parsimonious.exceptions import ParseError
from parsimonious.grammar import Grammar
from parsimonious.nodes import Node, NodeVisitor

logger = logging.getLogger(__name__)


TYPE_GRAMMAR = Grammar(r'''
    type_id        = ws part*
    part           = (template_args / scope_sep / word / punct) ws

    template_args  = "<" (template_args / ~r"[^<>]+")* ">"
    scope_sep      = "::"
    word           = ~r"[A-Za-z_][A-Za-z0-9_]*"
    punct          = ~r"[^A-Za-z_<>:\s]" / ":"

    ws             = ~r"\s*"
''')

# cv-qualifiers and elaborated-type keywords carry no nominal identity
DECLARATOR_WORDS = frozenset(
    {"const", "volatile", "struct", "class", "union", "enum", "typename"}
)

_SCOPE_SPACING = re.compile(r"\s*::\s*")


class TypeNameBuilder(NodeVisitor):
    """Collects the nominal pieces of a type spelling, bottom-up."""

    grammar = TYPE_GRAMMAR

    def generic_visit(self, node: Node, visited_children: List[List[str]]) -> List[str]:
        return [piece for child in visited_children for piece in child]

    def visit_template_args(self, node: Node, visited_children: list) -> List[str]:
        return []

    def visit_scope_sep(self, node: Node, visited_children: list) -> List[str]:
        return ["::"]

    def visit_word(self, node: Node, visited_children: list) -> List[str]:
        if node.text in DECLARATOR_WORDS:
            return []
        return [node.text]

    def visit_punct(self, node: Node, visited_children: list) -> List[str]:
        return []

    def visit_ws(self, node: Node, visited_children: list) -> List[str]:
        return [" "] if node.text else []


def _tidy(text: str) -> str:
    text = _SCOPE_SPACING.sub("::", " ".join(text.split()))
    while text.startswith("::"):
        text = text[2:]
    return text


@functools.lru_cache(maxsize=4096)
def nominal_name(type_text: str) -> str:
    """
    Reduce a spelled C++ type to the name used for nominal comparison.

    Template argument lists, cv-qualifiers, elaborated-type keywords,
    pointer/reference declarators and a leading ``::`` are dropped:

    >>> nominal_name("const ::llvm::PointerUnion<A *, B *> &")
    'llvm::PointerUnion'

    A spelling the grammar cannot take (an unbalanced ``<``, say) comes
    back whitespace-normalised but otherwise untouched.
    """
    try:
        pieces = TypeNameBuilder().parse(type_text)
    except ParseError as exc:
        logger.debug("Cannot parse type spelling %r: %s", type_text, exc)
        return _tidy(type_text)
    return _tidy("".join(pieces))


__all__ = [
    "TYPE_GRAMMAR",
    "DECLARATOR_WORDS",
    "TypeNameBuilder",
    "nominal_name",
]
