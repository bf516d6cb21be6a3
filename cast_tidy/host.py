"""
cast_tidy/host.py
═════════════════

Adapter between the cppcheck dump model and the pattern catalog.

cppcheck gives us tokens, an AST threaded through them, scopes and value
types.  This module turns that into what the catalog and the rewrite engine
need:

    ┌─────────────────────────────────────────────────────────────────┐
    │  iter_member_calls(cfg)                                         │
    │    • ``obj.m<...>()`` / ``ptr->m<...>()`` calls                 │
    │    • calls on an implicit ``this`` inside member functions      │
    ├─────────────────────────────────────────────────────────────────┤
    │  ClassHierarchy            (the catalog's TypeOracle)           │
    │    • class heads ``class D : public B``  → derivation closure   │
    │    • ``using namespace`` directives for unqualified spellings   │
    ├─────────────────────────────────────────────────────────────────┤
    │  SourceCache / call_source                                      │
    │    • original text of a call, sliced by token line/column       │
    │    • falls back to re-joining token strings                     │
    └─────────────────────────────────────────────────────────────────┘

cppcheck folds ``->`` into a ``.`` token whose ``originalName`` is ``->``;
``is_arrow_access`` hides that.  All accessors tolerate missing attributes
so the fake token graphs used in tests stay small.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict, deque
from pathlib import Path
from typing import (
    Any,
    Dict,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from cast_tidy.catalog import MemberCall, TypeRef, nominal_name
from cast_tidy.diagnostics import SourceLocation, SourceRange
from cast_tidy.errors import InternalMatchError

logger = logging.getLogger(__name__)

# cppcheckdata.Token; kept as Any so nothing here imports cppcheckdata
Token = Any

CLASS_SCOPE_TYPES: FrozenSet[str] = frozenset({"Class", "Struct", "Union"})
NAMESPACE_SCOPE_TYPES: FrozenSet[str] = frozenset({"Namespace"}) | CLASS_SCOPE_TYPES
ACCESS_SPECIFIERS: FrozenSet[str] = frozenset(
    {"public", "protected", "private", "virtual"}
)

_WORD = re.compile(r"^[A-Za-z_0-9]")


# ═════════════════════════════════════════════════════════════════════════
#  PART 1: SAFE ACCESSORS
# ═════════════════════════════════════════════════════════════════════════

def tok_str(tok: Token) -> str:
    if tok is None:
        return ""
    return getattr(tok, "str", "") or ""


def tok_op1(tok: Token) -> Optional[Token]:
    if tok is None:
        return None
    return getattr(tok, "astOperand1", None)


def tok_op2(tok: Token) -> Optional[Token]:
    if tok is None:
        return None
    return getattr(tok, "astOperand2", None)


def tok_next(tok: Token) -> Optional[Token]:
    if tok is None:
        return None
    return getattr(tok, "next", None)


def tok_previous(tok: Token) -> Optional[Token]:
    if tok is None:
        return None
    return getattr(tok, "previous", None)


def tok_link(tok: Token) -> Optional[Token]:
    if tok is None:
        return None
    return getattr(tok, "link", None)


def tok_file(tok: Token) -> str:
    return getattr(tok, "file", "") or ""


def tok_line(tok: Token) -> int:
    return getattr(tok, "linenr", 0) or 0


def tok_column(tok: Token) -> int:
    return getattr(tok, "column", 0) or 0


def tok_location(tok: Token) -> SourceLocation:
    return SourceLocation(
        file=tok_file(tok), line=tok_line(tok), column=tok_column(tok)
    )


def tok_spelling(tok: Token) -> str:
    """The token as written: ``originalName`` wins over the simplified str."""
    return getattr(tok, "originalName", "") or tok_str(tok)


def is_member_access(tok: Token) -> bool:
    return tok_str(tok) in (".", "->")


def is_arrow_access(tok: Token) -> bool:
    return tok_str(tok) == "->" or getattr(tok, "originalName", "") == "->"


def iter_ast(root: Token) -> Iterator[Token]:
    """Pre-order walk of the AST below ``root`` (inclusive)."""
    stack = [root] if root is not None else []
    seen: Set[int] = set()
    while stack:
        tok = stack.pop()
        if tok is None or id(tok) in seen:
            continue
        seen.add(id(tok))
        yield tok
        stack.append(tok_op2(tok))
        stack.append(tok_op1(tok))


def _position(tok: Token) -> Tuple[int, int]:
    return (tok_line(tok), tok_column(tok))


# ═════════════════════════════════════════════════════════════════════════
#  PART 2: SCOPES AND CLASS HIERARCHY
# ═════════════════════════════════════════════════════════════════════════

def scope_qualified_name(scope: Any) -> str:
    """``ns::Outer::Inner`` for a class scope, following ``nestedIn``."""
    parts: List[str] = []
    seen: Set[int] = set()
    while scope is not None and id(scope) not in seen:
        seen.add(id(scope))
        if getattr(scope, "type", "") in NAMESPACE_SCOPE_TYPES:
            name = getattr(scope, "className", "") or ""
            if name:
                parts.append(name)
        scope = getattr(scope, "nestedIn", None)
    return "::".join(reversed(parts))


def enclosing_namespaces(scope: Any) -> List[str]:
    """Qualified names of the namespaces/classes around ``scope``, innermost first."""
    result: List[str] = []
    scope = getattr(scope, "nestedIn", None)
    while scope is not None:
        if getattr(scope, "type", "") in NAMESPACE_SCOPE_TYPES:
            name = scope_qualified_name(scope)
            if name and name not in result:
                result.append(name)
        scope = getattr(scope, "nestedIn", None)
    return result


def enclosing_class(scope: Any) -> Optional[Any]:
    """The class a (member-)function scope belongs to, if any."""
    seen: Set[int] = set()
    while scope is not None and id(scope) not in seen:
        seen.add(id(scope))
        if getattr(scope, "type", "") in CLASS_SCOPE_TYPES:
            return scope
        if getattr(scope, "type", "") == "Function":
            func = getattr(scope, "function", None)
            owner = getattr(func, "nestedIn", None) if func is not None else None
            if getattr(owner, "type", "") in CLASS_SCOPE_TYPES:
                return owner
        scope = getattr(scope, "nestedIn", None)
    return None


def _split_top_level(tokens: Sequence[Token], sep: str) -> List[List[Token]]:
    """Split a token run on ``sep`` outside ``<>`` / ``()`` nesting."""
    groups: List[List[Token]] = [[]]
    depth = 0
    for tok in tokens:
        s = tok_str(tok)
        if s in ("<", "("):
            depth += 1
        elif s in (">", ")"):
            depth = max(depth - 1, 0)
        elif s == ">>":
            depth = max(depth - 2, 0)
        if s == sep and depth == 0:
            groups.append([])
            continue
        groups[-1].append(tok)
    return [g for g in groups if g]


def class_head_bases(scope: Any) -> List[str]:
    """
    Base classes as written in the head of a class scope.

    Walks back from the ``{`` that opens the body to the ``class`` /
    ``struct`` keyword, then reads the base-specifier list after ``:``.
    """
    head: List[Token] = []
    tok = tok_previous(getattr(scope, "bodyStart", None))
    while tok is not None and tok_str(tok) not in ("class", "struct", "union"):
        if tok_str(tok) in (";", "{", "}"):
            return []
        head.append(tok)
        tok = tok_previous(tok)
    head.reverse()
    colon = next(
        (i for i, t in enumerate(head) if tok_str(t) == ":"), None
    )
    if colon is None:
        return []
    bases: List[str] = []
    for group in _split_top_level(head[colon + 1:], ","):
        words = [tok_str(t) for t in group if tok_str(t) not in ACCESS_SPECIFIERS]
        if words:
            bases.append("".join(words))
    return bases


class ClassHierarchy:
    """
    Derivation closure over the classes declared in one configuration.

    Base names are kept as the list of spellings they could resolve to
    (innermost enclosing namespace first), since the base class itself is
    frequently declared in a header that is not part of the dump.

    >>> h = ClassHierarchy()
    >>> h.add_class("mlir::MyAttr", ["Attribute"], ["mlir"])
    >>> h.is_a("mlir::MyAttr", "mlir::Attribute")
    True
    """

    def __init__(self) -> None:
        self._bases: Dict[str, List[Tuple[str, ...]]] = defaultdict(list)
        self.using_namespaces: Set[str] = set()

    # ── construction ─────────────────────────────────────────────────

    def add_class(self, name: str, bases: Iterable[str],
                  namespaces: Sequence[str] = ()) -> None:
        """Record ``name`` deriving from each of ``bases``."""
        name = nominal_name(name)
        entry = self._bases[name]
        for base in bases:
            written = base.strip()
            base_name = nominal_name(written)
            if not base_name:
                continue
            if written.startswith("::"):
                entry.append((base_name,))
                continue
            candidates = [f"{ns}::{base_name}" for ns in namespaces]
            candidates.append(base_name)
            entry.append(tuple(candidates))

    def add_using_namespace(self, namespace: str) -> None:
        self.using_namespaces.add(nominal_name(namespace))

    @classmethod
    def from_configuration(cls, cfg: Any) -> "ClassHierarchy":
        """Collect class heads and ``using namespace`` directives."""
        hierarchy = cls()
        for scope in getattr(cfg, "scopes", None) or []:
            if getattr(scope, "type", "") not in CLASS_SCOPE_TYPES:
                continue
            name = scope_qualified_name(scope)
            if not name:
                continue
            hierarchy.add_class(
                name, class_head_bases(scope), enclosing_namespaces(scope)
            )
        for namespace in iter_using_namespaces(getattr(cfg, "tokenlist", None) or []):
            hierarchy.add_using_namespace(namespace)
        logger.debug("Class hierarchy: %d classes, %d using-directives",
                     len(hierarchy._bases), len(hierarchy.using_namespaces))
        return hierarchy

    # ── queries ──────────────────────────────────────────────────────

    @property
    def classes(self) -> List[str]:
        return sorted(self._bases)

    def knows(self, name: str) -> bool:
        return nominal_name(name) in self._bases

    def same_type(self, spelled: str, qualified: str) -> bool:
        """
        ``spelled`` names ``qualified``, directly or through a
        ``using namespace`` directive.
        """
        if spelled == qualified:
            return True
        if not qualified.endswith("::" + spelled):
            return False
        return qualified[: -len(spelled) - 2] in self.using_namespaces

    def bases_of(self, name: str) -> List[str]:
        """Direct bases of ``name``, each resolved to its best spelling."""
        result: List[str] = []
        for candidates in self._bases.get(nominal_name(name), []):
            known = [c for c in candidates if c in self._bases]
            result.append(known[0] if known else candidates[0])
        return result

    def is_a(self, type_name: str, base_name: str) -> bool:
        """True if ``type_name`` is ``base_name`` or transitively derives from it."""
        start = nominal_name(type_name)
        target = nominal_name(base_name)
        queue = deque([start])
        visited: Set[str] = set()
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)
            if self.same_type(current, target):
                return True
            for candidates in self._bases.get(current, []):
                for candidate in candidates:
                    if self.same_type(candidate, target):
                        return True
                    if candidate in self._bases:
                        queue.append(candidate)
        return False


def iter_using_namespaces(tokens: Iterable[Token]) -> Iterator[str]:
    """Yield ``X::Y`` for every ``using namespace X::Y;`` in the token list."""
    for tok in tokens:
        if tok_str(tok) != "using" or tok_str(tok_next(tok)) != "namespace":
            continue
        parts: List[str] = []
        cur = tok_next(tok_next(tok))
        while cur is not None and tok_str(cur) != ";":
            parts.append(tok_str(cur))
            cur = tok_next(cur)
        if parts:
            yield "".join(parts)


# ═════════════════════════════════════════════════════════════════════════
#  PART 3: RECEIVER TYPES
# ═════════════════════════════════════════════════════════════════════════

def spelled_type(variable: Any) -> str:
    """The declared type of a variable, re-joined from its type tokens."""
    start = getattr(variable, "typeStartToken", None)
    end = getattr(variable, "typeEndToken", None)
    if start is None:
        return ""
    words: List[str] = []
    tok = start
    while tok is not None:
        words.append(tok_str(tok))
        if tok is end or end is None:
            break
        tok = tok_next(tok)
    return join_tokens(words)


def class_type_ref(scope: Any) -> Optional[TypeRef]:
    name = scope_qualified_name(scope)
    return TypeRef(name) if name else None


def receiver_type(tok: Token) -> Optional[TypeRef]:
    """
    The declared type of the receiver expression rooted at ``tok``.

    Preference order: cppcheck's ValueType (class scope, with the alias
    name from ``originalTypeName`` as the declared type), the variable's
    declared type tokens, the enclosing class for ``this``.
    """
    if tok is None:
        return None
    value_type = getattr(tok, "valueType", None)
    alias = getattr(value_type, "originalTypeName", None) or None
    type_scope = getattr(value_type, "typeScope", None)
    if type_scope is not None:
        name = scope_qualified_name(type_scope)
        if name:
            if alias and nominal_name(alias) != nominal_name(name):
                return TypeRef(alias, underlying=name)
            return TypeRef(name)
    variable = getattr(tok, "variable", None)
    if variable is not None:
        spelled = spelled_type(variable)
        if spelled:
            if alias and nominal_name(alias) != nominal_name(spelled):
                return TypeRef(alias, underlying=spelled)
            return TypeRef(spelled)
    if tok_str(tok) == "this":
        owner = enclosing_class(getattr(tok, "scope", None))
        if owner is not None:
            return class_type_ref(owner)
    if alias:
        return TypeRef(alias)
    return None


# ═════════════════════════════════════════════════════════════════════════
#  PART 4: MEMBER CALL DISCOVERY
# ═════════════════════════════════════════════════════════════════════════

def member_token(access: Token) -> Optional[Token]:
    """The member name after ``.``/``->``, skipping a ``template`` keyword."""
    tok = tok_next(access)
    if tok_str(tok) == "template":
        tok = tok_next(tok)
    return tok


def _has_no_arguments(call_tok: Token) -> bool:
    if tok_op2(call_tok) is not None:
        return False
    link = tok_link(call_tok)
    return link is None or tok_next(call_tok) is link


def _is_unqualified_name(tok: Token) -> bool:
    if not getattr(tok, "isName", bool(_WORD.match(tok_str(tok)))):
        return False
    return tok_str(tok_previous(tok)) not in (".", "->", "::")


def explicit_member_call(call_tok: Token) -> Optional[MemberCall]:
    """``obj.m<...>()`` or ``ptr->m<...>()`` with ``call_tok`` as its ``(``."""
    access = tok_op1(call_tok)
    if not is_member_access(access):
        return None
    member = member_token(access)
    if member is None:
        return None
    return MemberCall(
        member=tok_str(member),
        is_arrow=is_arrow_access(access),
        receiver_type=receiver_type(tok_op1(access)),
        token=call_tok,
    )


def implicit_member_call(call_tok: Token,
                         member_names: FrozenSet[str]) -> Optional[MemberCall]:
    """
    ``m<...>()`` inside a member function: a call on the implicit ``this``.

    Only argument-less calls qualify, so the free functions ``cast<T>(x)``
    never look like members.
    """
    callee = tok_op1(call_tok)
    if callee is None or tok_str(callee) not in member_names:
        return None
    if not _is_unqualified_name(callee) or not _has_no_arguments(call_tok):
        return None
    owner = enclosing_class(getattr(call_tok, "scope", None))
    if owner is None:
        return None
    return MemberCall(
        member=tok_str(callee),
        is_arrow=True,
        receiver_type=class_type_ref(owner),
        token=call_tok,
    )


def iter_member_calls(cfg: Any,
                      member_names: FrozenSet[str]) -> Iterator[MemberCall]:
    """Every member call in ``cfg`` whose member name is in ``member_names``."""
    for tok in getattr(cfg, "tokenlist", None) or []:
        if tok_str(tok) != "(" or tok_op1(tok) is None:
            continue
        call = explicit_member_call(tok)
        if call is None:
            call = implicit_member_call(tok, member_names)
        if call is not None and call.member in member_names:
            yield call


# ═════════════════════════════════════════════════════════════════════════
#  PART 5: SOURCE TEXT
# ═════════════════════════════════════════════════════════════════════════

class SourceBuffer:
    """
    One source file's raw bytes with line/column → offset mapping.

    Columns and offsets count bytes of the file as stored on disk, the
    unit cppcheck reports columns in and replacement files address.  Line
    endings are kept as they are, so ``\\r\\n`` files map correctly.
    """

    def __init__(self, path: str, data: Union[bytes, str]) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.path = path
        self.data = data
        self._line_starts = [0]
        pos = data.find(b"\n")
        while pos != -1:
            self._line_starts.append(pos + 1)
            pos = data.find(b"\n", pos + 1)

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")

    def offset(self, line: int, column: int) -> int:
        """Byte offset of a 1-based (line, column) position."""
        if line < 1 or line > len(self._line_starts) or column < 1:
            raise IndexError(f"{self.path}:{line}:{column} is out of range")
        return self._line_starts[line - 1] + column - 1

    def slice(self, start: int, end: int) -> str:
        return self.data[start:end].decode("utf-8", errors="replace")


class SourceCache:
    """Lazily loaded source files, looked up relative to ``search_dirs``."""

    def __init__(self, search_dirs: Sequence[str] = ()) -> None:
        self.search_dirs = [Path(d) for d in search_dirs]
        self._buffers: Dict[str, Optional[SourceBuffer]] = {}

    def add(self, path: str, data: Union[bytes, str]) -> SourceBuffer:
        buffer = SourceBuffer(path, data)
        self._buffers[path] = buffer
        return buffer

    def get(self, path: str) -> Optional[SourceBuffer]:
        if path in self._buffers:
            return self._buffers[path]
        buffer = None
        for candidate in self._candidates(path):
            if candidate.is_file():
                buffer = SourceBuffer(path, candidate.read_bytes())
                break
        if buffer is None:
            logger.debug("Source file not found: %s", path)
        self._buffers[path] = buffer
        return buffer

    def _candidates(self, path: str) -> Iterator[Path]:
        p = Path(path)
        yield p
        if not p.is_absolute():
            for d in self.search_dirs:
                yield d / p


def join_tokens(words: Iterable[str]) -> str:
    """Re-join token strings, spacing only between two word-like tokens."""
    out = ""
    for word in words:
        if out and _WORD.match(word) and _WORD.match(out[-1]):
            out += " "
        out += word
    return out


def call_bounds(call_tok: Token) -> Tuple[Token, Token]:
    """
    First and last token of the call whose ``(`` is ``call_tok``.

    The first token is the leftmost token of the callee subtree, widened
    over grouping parentheses that close before the member access.
    """
    end = tok_link(call_tok)
    callee = tok_op1(call_tok)
    if end is None or callee is None:
        raise InternalMatchError(
            "matched call has no callee or closing parenthesis", call_tok
        )
    start = min(iter_ast(callee), key=_position)
    prev = tok_previous(start)
    while tok_str(prev) == "(" and tok_link(prev) is not None \
            and _position(tok_link(prev)) < _position(call_tok):
        start = prev
        prev = tok_previous(start)
    return start, end


def call_source(call_tok: Token,
                sources: Optional[SourceCache] = None) -> Tuple[str, SourceRange]:
    """
    Original text and range of the call expression opened by ``call_tok``.

    Raises ``InternalMatchError`` when the call cannot be delimited.
    """
    start, end = call_bounds(call_tok)
    begin = tok_location(start)
    end_loc = SourceLocation(
        file=tok_file(end),
        line=tok_line(end),
        column=tok_column(end) + len(tok_str(end)),
    )
    if not begin.line or not end_loc.line:
        raise InternalMatchError("matched call has no source position", call_tok)
    if begin.file != end_loc.file:
        raise InternalMatchError(
            f"call spans files {begin.file} and {end_loc.file}", call_tok
        )
    buffer = sources.get(begin.file) if sources is not None else None
    if buffer is not None:
        try:
            lo = buffer.offset(begin.line, begin.column)
            hi = buffer.offset(end_loc.line, end_loc.column)
        except IndexError as exc:
            raise InternalMatchError(str(exc), call_tok, exc) from exc
        return buffer.slice(lo, hi), SourceRange(begin, end_loc, lo, hi - lo)
    words = []
    tok = start
    while tok is not None:
        words.append(tok_spelling(tok))
        if tok is end:
            break
        tok = tok_next(tok)
    return join_tokens(words), SourceRange(begin, end_loc)


__all__ = [
    "tok_str",
    "tok_location",
    "tok_spelling",
    "is_member_access",
    "is_arrow_access",
    "iter_ast",
    "scope_qualified_name",
    "enclosing_namespaces",
    "enclosing_class",
    "class_head_bases",
    "ClassHierarchy",
    "iter_using_namespaces",
    "spelled_type",
    "receiver_type",
    "member_token",
    "explicit_member_call",
    "implicit_member_call",
    "iter_member_calls",
    "SourceBuffer",
    "SourceCache",
    "join_tokens",
    "call_bounds",
    "call_source",
]
