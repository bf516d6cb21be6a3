# tests/conftest.py
"""
Shared fixtures and a small fake of the cppcheck dump model.

``parse_cpp`` tokenizes a C++ snippet the way cppcheck presents it to
addons: linked brackets, ``->`` folded into ``.`` with ``originalName``,
1-based line/column positions, scopes for namespaces, classes and function
bodies, and an AST for calls and member accesses.  It understands only what
the tests feed it.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

import pytest

from cast_tidy.host import SourceCache

_TOKEN = re.compile(r"->|::|\.\.\.|[A-Za-z_]\w*|\d+(?:\.\d+)?|\"[^\"]*\"|\S")
_NAME = re.compile(r"^[A-Za-z_]\w*$")
_KEYWORDS = {"class", "struct", "namespace", "public", "private", "protected",
             "virtual", "template", "using", "return", "if", "const", "void",
             "auto", "bool", "int", "for", "while", "switch"}
_CONTROL_SCOPES = {"if": "If", "for": "For", "while": "While",
                   "switch": "Switch"}


class MockToken:
    def __init__(self, s: str, line: int = 1, column: int = 1,
                 file: str = "test.cpp") -> None:
        self.str = s
        self.linenr = line
        self.column = column
        self.file = file
        self.next: Optional[MockToken] = None
        self.previous: Optional[MockToken] = None
        self.link: Optional[MockToken] = None
        self.astOperand1: Optional[MockToken] = None
        self.astOperand2: Optional[MockToken] = None
        self.astParent: Optional[MockToken] = None
        self.originalName = ""
        self.isName = bool(_NAME.match(s))
        self.variable: Any = None
        self.valueType: Any = None
        self.scope: Any = None

    def __repr__(self) -> str:
        return f"<MockToken {self.str!r} {self.linenr}:{self.column}>"


class MockScope:
    def __init__(self, type: str, className: str = "",
                 nestedIn: Any = None, bodyStart: Any = None) -> None:
        self.type = type
        self.className = className
        self.nestedIn = nestedIn
        self.bodyStart = bodyStart
        self.bodyEnd = None
        self.function: Any = None

    def __repr__(self) -> str:
        return f"<MockScope {self.type} {self.className!r}>"


class MockFunction:
    def __init__(self, name: str, nestedIn: Any = None) -> None:
        self.name = name
        self.nestedIn = nestedIn


class MockVariable:
    def __init__(self, typeStartToken: Any, typeEndToken: Any) -> None:
        self.typeStartToken = typeStartToken
        self.typeEndToken = typeEndToken


class MockValueType:
    def __init__(self, typeScope: Any = None,
                 originalTypeName: Optional[str] = None) -> None:
        self.typeScope = typeScope
        self.originalTypeName = originalTypeName
        self.pointer = 0


class MockConfiguration:
    def __init__(self, tokenlist: List[MockToken],
                 scopes: List[MockScope], name: str = "") -> None:
        self.tokenlist = tokenlist
        self.scopes = scopes
        self.name = name

    def tokens(self, s: str) -> List[MockToken]:
        return [t for t in self.tokenlist if t.str == s]

    def scope(self, class_name: str) -> MockScope:
        return next(s for s in self.scopes if s.className == class_name)


class MockCppcheckData:
    def __init__(self, configurations: List[MockConfiguration]) -> None:
        self.configurations = configurations

    def iterconfigurations(self):
        return iter(self.configurations)


# ─────────────────────────────────────────────────────────────────────────
#  Tokenizer
# ─────────────────────────────────────────────────────────────────────────

def make_token_chain(source: str, file: str = "test.cpp") -> List[MockToken]:
    tokens: List[MockToken] = []
    for lineno, line in enumerate(source.split("\n"), start=1):
        for m in _TOKEN.finditer(line):
            tok = MockToken(m.group(0), lineno, m.start() + 1, file)
            if tok.str == "->":
                tok.str = "."
                tok.originalName = "->"
            tokens.append(tok)
    for a, b in zip(tokens, tokens[1:]):
        a.next = b
        b.previous = a
    stack: List[MockToken] = []
    for tok in tokens:
        if tok.str in ("(", "{", "["):
            stack.append(tok)
        elif tok.str in (")", "}", "]"):
            opener = stack.pop()
            opener.link = tok
            tok.link = opener
    return tokens


def _template_open(close: MockToken) -> Optional[MockToken]:
    depth = 0
    tok: Optional[MockToken] = close
    while tok is not None:
        if tok.str == ">":
            depth += 1
        elif tok.str == "<":
            depth -= 1
            if depth == 0:
                return tok
        elif tok.str in (";", "{", "}"):
            return None
        tok = tok.previous
    return None


def _set_ast(parent: MockToken, op1: Any = None, op2: Any = None) -> None:
    parent.astOperand1 = op1
    parent.astOperand2 = op2
    for op in (op1, op2):
        if op is not None:
            op.astParent = parent


def _expression_root(tok: Optional[MockToken]) -> Optional[MockToken]:
    """AST root of the postfix expression ending at ``tok``."""
    if tok is None:
        return None
    if tok.str == ")" and tok.link is not None:
        if tok.link.astOperand1 is not None:
            return tok.link
        # grouping parentheses
        return _expression_root(tok.previous)
    if tok.isName and tok.str not in _KEYWORDS | {"this"} or tok.str == "this":
        prev = tok.previous
        if prev is not None and prev.str == "." and prev.astOperand1 is None:
            _set_ast(prev, _expression_root(prev.previous), tok)
            return prev
        if prev is not None and prev.str == "::" and prev.previous is not None:
            _set_ast(prev, prev.previous, tok)
            return prev
        return tok
    return tok


def _build_call_ast(tokens: List[MockToken]) -> None:
    for tok in tokens:
        if tok.str != "(" or tok.previous is None:
            continue
        callee_end = tok.previous
        if callee_end.str == ">":
            opener = _template_open(callee_end)
            if opener is None:
                continue
            callee_end = opener.previous
        if callee_end is None or not callee_end.isName:
            continue
        if callee_end.str in _KEYWORDS:
            continue
        name = callee_end
        access = name.previous
        if access is not None and access.str == "template":
            access = access.previous
        if access is not None and access.str == ".":
            _set_ast(access, _expression_root(access.previous), name)
            callee = access
        else:
            callee = name
        first_arg = tok.next if tok.next is not tok.link else None
        _set_ast(tok, callee, _expression_root(first_arg) if first_arg else None)


def _build_scopes(tokens: List[MockToken]) -> List[MockScope]:
    glob = MockScope("Global")
    scopes = [glob]
    stack = [glob]
    pending: Optional[MockScope] = None
    for tok in tokens:
        tok.scope = stack[-1]
        if tok.str in ("namespace", "class", "struct") and pending is None:
            nxt = tok.next
            if nxt is not None and nxt.isName:
                kind = {"namespace": "Namespace", "class": "Class",
                        "struct": "Struct"}[tok.str]
                pending = MockScope(kind, nxt.str, stack[-1])
        elif tok.str == ";" and pending is not None:
            pending = None  # forward declaration
        elif tok.str == "{":
            if pending is not None:
                scope = pending
                pending = None
            elif tok.previous is not None and tok.previous.str in (")", "const"):
                head = tok.previous
                while head is not None and head.str != ")":
                    head = head.previous
                name_tok = head.link.previous if head and head.link else None
                name = name_tok.str if name_tok else ""
                if name in _CONTROL_SCOPES:
                    scope = MockScope(_CONTROL_SCOPES[name], "", stack[-1])
                else:
                    scope = MockScope("Function", name, stack[-1])
                    owner = stack[-1] if stack[-1].type in ("Class", "Struct") else None
                    scope.function = MockFunction(name, owner)
            else:
                scope = MockScope("Unconditional", "", stack[-1])
            scope.bodyStart = tok
            scope.bodyEnd = tok.link
            scopes.append(scope)
            stack.append(scope)
            tok.scope = scope
        elif tok.str == "}" and len(stack) > 1:
            stack.pop()
    return scopes


def make_cfg(source: str, file: str = "test.cpp",
             variables: Optional[Dict[str, str]] = None,
             name: str = "") -> MockConfiguration:
    """
    Tokenize ``source`` and attach declared types.

    ``variables`` maps a variable name to its declared type text; every
    use of the name gets a ``variable`` whose type tokens spell it.
    """
    tokens = make_token_chain(source, file)
    _build_call_ast(tokens)
    scopes = _build_scopes(tokens)
    cfg = MockConfiguration(tokens, scopes, name)
    for var_name, type_text in (variables or {}).items():
        declare(cfg, var_name, type_text)
    return cfg


def make_data(*cfgs: MockConfiguration) -> MockCppcheckData:
    return MockCppcheckData(list(cfgs))


def declare(cfg: MockConfiguration, var_name: str, type_text: str) -> None:
    type_tokens = make_token_chain(type_text, file="<decl>")
    variable = MockVariable(type_tokens[0], type_tokens[-1])
    for tok in cfg.tokenlist:
        if tok.str == var_name and tok.isName:
            tok.variable = variable


def set_value_type(cfg: MockConfiguration, var_name: str, type_scope: Any,
                   original: Optional[str] = None) -> None:
    for tok in cfg.tokenlist:
        if tok.str == var_name and tok.isName:
            tok.valueType = MockValueType(type_scope, original)


def sources_for(cfg_source: str, file: str = "test.cpp") -> SourceCache:
    cache = SourceCache()
    cache.add(file, cfg_source)
    return cache


# ─────────────────────────────────────────────────────────────────────────
#  Fixtures
# ─────────────────────────────────────────────────────────────────────────

MLIR_SOURCE = """\
namespace mlir {
class MyAttr : public Attribute {
};
class MyOp : public Op<MyOp> {
  void verify() {
    if (isa<Foo>()) {
    }
  }
};
}
void run(mlir::MyAttr a, mlir::Value *v, Wrapper w) {
  auto x = a.cast<IntegerAttr>();
  auto y = v->dyn_cast<BlockArgument>();
  auto z = w.cast<Foo>();
}
"""


@pytest.fixture
def mlir_cfg() -> MockConfiguration:
    return make_cfg(MLIR_SOURCE, variables={
        "a": "mlir::MyAttr",
        "v": "mlir::Value *",
        "w": "Wrapper",
    })


@pytest.fixture
def mlir_sources() -> SourceCache:
    return sources_for(MLIR_SOURCE)
