"""
cast_tidy/catalog.py
════════════════════

The pattern catalog: which member calls count as "method-style casts".

A catalog is an ordered list of ``CatalogEntry`` objects, one per
(TypeFamily, OperationName) pair.  The host offers each member call it
finds as a ``MemberCall``; ``PatternCatalog.match`` returns the first entry
that fires.  Catalog order is the only precedence rule, so registration
only ever appends.

    ┌────────────────────┬──────────────────────────────────────────────┐
    │ family             │ recognised bases                             │
    ├────────────────────┼──────────────────────────────────────────────┤
    │ attribute          │ mlir::Attribute                              │
    │ operation          │ mlir::Op                                     │
    │ type               │ mlir::Type                                   │
    │ value              │ mlir::Value                                  │
    │ fold-result        │ mlir::OpFoldResult                           │
    │ pointer-union      │ llvm::PointerUnion   (permissive, aliases)   │
    └────────────────────┴──────────────────────────────────────────────┘

Type membership is "is-a": the receiver's declared type, or any class it
derives from, must be one of the family's bases.  The derivation closure
is answered by the host through the ``TypeOracle`` protocol.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    FrozenSet,
    Iterable,
    Iterator,
    List,
    Optional,
    Protocol,
    Tuple,
)

from cast_tidy.errors import CatalogError
from cast_tidy.spelling import nominal_name

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1: OPERATIONS AND TYPES
# ═════════════════════════════════════════════════════════════════════════

class OperationName(Enum):
    """The closed set of cast-like member operations."""
    CAST = "cast"
    DYN_CAST = "dyn_cast"
    DYN_CAST_OR_NULL = "dyn_cast_or_null"
    ISA = "isa"

    @property
    def variadic(self) -> bool:
        """``isa`` accepts a pack of target types (``isa<A, B...>``)."""
        return self is OperationName.ISA

    @classmethod
    def from_member(cls, member: str) -> Optional["OperationName"]:
        for op in cls:
            if op.value == member:
                return op
        return None


ALL_OPERATIONS: FrozenSet[OperationName] = frozenset(OperationName)


@dataclass(frozen=True)
class TypeRef:
    """
    The declared type of a receiver expression.

    ``name`` is the type as declared.  ``underlying`` is the target when
    the declared type is an alias, otherwise ``None``.
    """
    name: str
    underlying: Optional[str] = None

    @property
    def nominal(self) -> str:
        return nominal_name(self.name)

    @property
    def nominal_underlying(self) -> Optional[str]:
        if self.underlying is None:
            return None
        return nominal_name(self.underlying)


class TypeOracle(Protocol):
    """Host-side derivation query over nominal (normalised) type names."""

    def is_a(self, type_name: str, base_name: str) -> bool:
        """True if ``type_name`` is ``base_name`` or derives from it."""
        ...


@dataclass(frozen=True)
class TypeFamily:
    """
    A group of receiver types sharing the cast-like member operations.

    Attributes
    ----------
    name           : short identifier, e.g. ``"pointer-union"``
    bases          : nominal names of the recognised base types
    operations     : supported operation names (never empty)
    permissive     : ``dyn_cast``/``dyn_cast_or_null`` become the
                     permissive variant for this family
    """
    name: str
    bases: Tuple[str, ...]
    operations: FrozenSet[OperationName] = ALL_OPERATIONS
    permissive: bool = False

    def __post_init__(self) -> None:
        if not self.operations:
            raise CatalogError(f"type family '{self.name}' has no operations")
        if not self.bases:
            raise CatalogError(f"type family '{self.name}' has no base types")
        object.__setattr__(
            self, "bases", tuple(nominal_name(b) for b in self.bases)
        )

    def recognises(self, receiver: Optional[TypeRef],
                   oracle: Optional[TypeOracle] = None) -> bool:
        """
        Is ``receiver`` one of this family's types (or derived from one)?

        An alias names the same type as its target, so both the declared
        name and the alias target are tried.
        """
        if receiver is None:
            return False
        candidates = [receiver.nominal]
        if receiver.nominal_underlying:
            candidates.append(receiver.nominal_underlying)
        for candidate in candidates:
            for base in self.bases:
                if candidate == base:
                    return True
                if oracle is not None and oracle.is_a(candidate, base):
                    return True
        return False


# ═════════════════════════════════════════════════════════════════════════
#  PART 2: MATCHER DESCRIPTORS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MemberCall:
    """
    A call whose callee is a member access, as offered by the host.

    ``token`` is an opaque handle back into the host tree.
    """
    member: str
    is_arrow: bool
    receiver_type: Optional[TypeRef]
    token: Any = field(default=None, compare=False)


@dataclass(frozen=True)
class CatalogEntry:
    """One (family, operation) matcher."""
    family: TypeFamily
    operation: OperationName

    def matches(self, call: MemberCall,
                oracle: Optional[TypeOracle] = None) -> bool:
        if call.member != self.operation.value:
            return False
        return self.family.recognises(call.receiver_type, oracle)

    def __str__(self) -> str:
        return f"{self.family.name}.{self.operation.value}"


class PatternCatalog:
    """
    Ordered table of cast-like call matchers.

    Usage
    -----
    >>> catalog = PatternCatalog()
    >>> catalog.register(ATTRIBUTE_FAMILY)
    >>> entry = catalog.match(call, oracle)
    """

    def __init__(self) -> None:
        self._entries: List[CatalogEntry] = []

    def register(
        self,
        family: TypeFamily,
        operations: Optional[Iterable[OperationName]] = None,
    ) -> List[CatalogEntry]:
        """
        Append one entry per operation of ``family``.

        ``operations`` defaults to everything the family supports and must
        be a non-empty subset of it.  Entries are appended in
        ``OperationName`` declaration order.
        """
        wanted = family.operations if operations is None else frozenset(operations)
        if not wanted:
            raise CatalogError(
                f"no operations given when registering '{family.name}'"
            )
        unsupported = wanted - family.operations
        if unsupported:
            names = ", ".join(sorted(op.value for op in unsupported))
            raise CatalogError(
                f"type family '{family.name}' does not support: {names}"
            )
        added = [
            CatalogEntry(family, op) for op in OperationName if op in wanted
        ]
        self._entries.extend(added)
        logger.debug("Registered %d matchers for family %s",
                     len(added), family.name)
        return added

    @property
    def entries(self) -> Tuple[CatalogEntry, ...]:
        return tuple(self._entries)

    @property
    def families(self) -> List[TypeFamily]:
        """Registered families, in first-registration order."""
        seen: List[TypeFamily] = []
        for entry in self._entries:
            if entry.family not in seen:
                seen.append(entry.family)
        return seen

    @property
    def member_names(self) -> FrozenSet[str]:
        """Every member name some entry can fire on (cheap host prefilter)."""
        return frozenset(e.operation.value for e in self._entries)

    def match(self, call: MemberCall,
              oracle: Optional[TypeOracle] = None) -> Optional[CatalogEntry]:
        """Return the first entry that fires on ``call``, or ``None``."""
        if call.member not in self.member_names:
            return None
        for entry in self._entries:
            if entry.matches(call, oracle):
                return entry
        return None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self._entries)

    def __repr__(self) -> str:
        return f"<PatternCatalog {len(self._entries)} entries>"


# ═════════════════════════════════════════════════════════════════════════
#  PART 3: THE BUILT-IN TABLE
# ═════════════════════════════════════════════════════════════════════════

ATTRIBUTE_FAMILY = TypeFamily("attribute", ("mlir::Attribute",))
OPERATION_FAMILY = TypeFamily("operation", ("mlir::Op",))
TYPE_FAMILY = TypeFamily("type", ("mlir::Type",))
VALUE_FAMILY = TypeFamily("value", ("mlir::Value",))
FOLD_RESULT_FAMILY = TypeFamily("fold-result", ("mlir::OpFoldResult",))
POINTER_UNION_FAMILY = TypeFamily(
    "pointer-union",
    ("llvm::PointerUnion",),
    permissive=True,
)

BUILTIN_FAMILIES: Tuple[TypeFamily, ...] = (
    ATTRIBUTE_FAMILY,
    OPERATION_FAMILY,
    TYPE_FAMILY,
    VALUE_FAMILY,
    FOLD_RESULT_FAMILY,
    POINTER_UNION_FAMILY,
)


def default_catalog() -> PatternCatalog:
    """Build a fresh catalog holding every built-in family, in table order."""
    catalog = PatternCatalog()
    for family in BUILTIN_FAMILIES:
        catalog.register(family)
    return catalog


__all__ = [
    "OperationName",
    "ALL_OPERATIONS",
    "nominal_name",
    "TypeRef",
    "TypeOracle",
    "TypeFamily",
    "MemberCall",
    "CatalogEntry",
    "PatternCatalog",
    "ATTRIBUTE_FAMILY",
    "OPERATION_FAMILY",
    "TYPE_FAMILY",
    "VALUE_FAMILY",
    "FOLD_RESULT_FAMILY",
    "POINTER_UNION_FAMILY",
    "BUILTIN_FAMILIES",
    "default_catalog",
]
