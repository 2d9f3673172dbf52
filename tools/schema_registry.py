#!/usr/bin/env python3
"""
schema_registry.py - Append-only schema for one SVCB decode session

Holds every storage, scope and variable declared so far, keyed by id.
Declarations are write-once and must only reference ids that were declared
earlier, which also rules out cycles in the scope tree:

    scope 0 (implicit root)
    ├── scope 2 "top"
    │   ├── scope 5 "cpu"
    │   │   └── variable "pc"  -> storages [3, 4]
    │   └── variable "clk"     -> storage 0
    └── ...

Variables have no id on the wire; they are numbered in declaration order.

Usage:
    from schema_registry import SchemaRegistry, Storage, Scope
    from logic_values import LogicKind

    reg = SchemaRegistry()
    reg.declare_scope(Scope(scope_id=2, parent_scope_id=0, name='top'))
    reg.declare_storage(Storage(id=0, logic_kind=LogicKind.TWO_VALUED, width=1))
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Iterator, List, Mapping, Sequence, Tuple

from logic_values import LogicKind, check_values
from svcb_errors import (
    DuplicateIdError,
    InvalidInterpretationError,
    UnknownReferenceError,
    WidthMismatchError,
)


ROOT_SCOPE_ID = 0


class Interpretation(IntEnum):
    """Variable interpretation (wire code)."""
    NONE = 0
    INTEGER = 1
    ENUM = 2
    UTF8 = 3

    @classmethod
    def from_code(cls, code: int) -> 'Interpretation':
        try:
            return cls(code)
        except ValueError:
            raise InvalidInterpretationError(
                f"Invalid variable interpretation: {code}") from None


class Signedness(IntEnum):
    """Integer signedness (wire code)."""
    SIGNED = 0
    UNSIGNED = 1

    @classmethod
    def from_code(cls, code: int) -> 'Signedness':
        try:
            return cls(code)
        except ValueError:
            raise InvalidInterpretationError(
                f"Invalid signedness value: {code}") from None


@dataclass(frozen=True)
class Storage:
    """Physical group of logic cells holding a signal's raw state."""
    id: int
    logic_kind: LogicKind
    width: int
    start: int = 0


@dataclass(frozen=True)
class Scope:
    scope_id: int
    parent_scope_id: int
    name: str


@dataclass(frozen=True)
class EnumField:
    name: str
    value: Tuple[int, ...]


@dataclass(frozen=True)
class Variable:
    """Named, scoped view over one or more storages.

    NONE / UTF8 / ENUM use exactly one entry in `storage_ids`; INTEGER may
    span several, concatenated in order (first = most significant).
    """
    scope_id: int
    name: str
    interpretation: Interpretation
    storage_ids: Tuple[int, ...]
    enum_fields: Tuple[EnumField, ...] = ()
    msb: int = 0
    lsb: int = 0
    signedness: Signedness = Signedness.UNSIGNED

    @property
    def storage_id(self) -> int:
        return self.storage_ids[0]

    @property
    def signed(self) -> bool:
        return self.signedness == Signedness.SIGNED

    @property
    def bit_width(self) -> int:
        return self.msb - self.lsb + 1


class SchemaRegistry:
    """Id-keyed tables of storages, scopes and variables."""

    def __init__(self):
        self.storages: Dict[int, Storage] = {}
        self.scopes: Dict[int, Scope] = {}
        self.variables: List[Variable] = []
        self._children: Dict[int, List[int]] = {ROOT_SCOPE_ID: []}
        self._scope_variables: Dict[int, List[int]] = {ROOT_SCOPE_ID: []}

    # -------------------------------------------------------------------------
    # Declarations
    # -------------------------------------------------------------------------

    def declare_storage(self, storage: Storage) -> Storage:
        if storage.id in self.storages:
            raise DuplicateIdError(f"Storage id {storage.id} was already declared")
        self.storages[storage.id] = storage
        return storage

    def declare_scope(self, scope: Scope) -> Scope:
        if scope.scope_id == ROOT_SCOPE_ID or scope.scope_id in self.scopes:
            raise DuplicateIdError(f"Scope id {scope.scope_id} was already declared")
        if not self.has_scope(scope.parent_scope_id):
            raise UnknownReferenceError(
                f"Scope {scope.scope_id} references undeclared parent "
                f"scope {scope.parent_scope_id}")
        self.scopes[scope.scope_id] = scope
        self._children[scope.parent_scope_id].append(scope.scope_id)
        self._children[scope.scope_id] = []
        self._scope_variables[scope.scope_id] = []
        return scope

    def check_variable(self, variable: Variable) -> None:
        """Raise if `variable` could not be declared; registry is untouched."""
        if not self.has_scope(variable.scope_id):
            raise UnknownReferenceError(
                f"Variable '{variable.name}' references undeclared scope "
                f"{variable.scope_id}")
        if not variable.storage_ids:
            raise WidthMismatchError(f"Variable '{variable.name}' has no storages")
        storages = [self.lookup_storage(sid) for sid in variable.storage_ids]

        interp = variable.interpretation
        if interp != Interpretation.INTEGER and len(storages) != 1:
            raise InvalidInterpretationError(
                f"Variable '{variable.name}' must reference exactly one storage")

        if interp == Interpretation.ENUM:
            storage = storages[0]
            if storage.logic_kind != LogicKind.TWO_VALUED:
                raise InvalidInterpretationError(
                    f"Enum variable '{variable.name}' needs a two-valued storage, "
                    f"storage {storage.id} is {storage.logic_kind.label}-valued")
            for ef in variable.enum_fields:
                if len(ef.value) != storage.width:
                    raise WidthMismatchError(
                        f"Enum value '{ef.name}' has {len(ef.value)} bits, "
                        f"storage {storage.id} is {storage.width} wide")
                check_values(LogicKind.TWO_VALUED, ef.value)

        elif interp == Interpretation.UTF8:
            storage = storages[0]
            if storage.width % 8:
                raise WidthMismatchError(
                    f"UTF-8 variable '{variable.name}' needs whole bytes, "
                    f"storage {storage.id} is {storage.width} wide")

        elif interp == Interpretation.INTEGER:
            if variable.msb < variable.lsb:
                raise WidthMismatchError(
                    f"Variable '{variable.name}': msb {variable.msb} < lsb {variable.lsb}")
            total = sum(s.width for s in storages)
            if total < variable.bit_width:
                raise WidthMismatchError(
                    f"Variable '{variable.name}' spans {variable.bit_width} bits "
                    f"but its storages only hold {total}")

    def declare_variable(self, variable: Variable) -> int:
        """Declare variable, return its id."""
        self.check_variable(variable)
        variable_id = len(self.variables)
        self.variables.append(variable)
        self._scope_variables[variable.scope_id].append(variable_id)
        return variable_id

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def has_scope(self, scope_id: int) -> bool:
        return scope_id == ROOT_SCOPE_ID or scope_id in self.scopes

    def lookup_storage(self, storage_id: int) -> Storage:
        try:
            return self.storages[storage_id]
        except KeyError:
            raise UnknownReferenceError(f"Unknown storage id {storage_id}") from None

    def lookup_scope(self, scope_id: int) -> Scope:
        try:
            return self.scopes[scope_id]
        except KeyError:
            raise UnknownReferenceError(f"Unknown scope id {scope_id}") from None

    def lookup_variable(self, variable_id: int) -> Variable:
        if not 0 <= variable_id < len(self.variables):
            raise UnknownReferenceError(f"Unknown variable id {variable_id}")
        return self.variables[variable_id]

    def resolve(self, variable_id: int,
                current_storage_values: Mapping[int, Sequence[int]]):
        """Typed value of a variable given the current raw storage values."""
        from variable_resolver import resolve_variable
        return resolve_variable(self.lookup_variable(variable_id), self,
                                current_storage_values)

    # -------------------------------------------------------------------------
    # Tree
    # -------------------------------------------------------------------------

    def children(self, scope_id: int = ROOT_SCOPE_ID) -> List[Scope]:
        if not self.has_scope(scope_id):
            raise UnknownReferenceError(f"Unknown scope id {scope_id}")
        return [self.scopes[c] for c in self._children[scope_id]]

    def variables_in(self, scope_id: int = ROOT_SCOPE_ID) -> List[int]:
        if not self.has_scope(scope_id):
            raise UnknownReferenceError(f"Unknown scope id {scope_id}")
        return list(self._scope_variables[scope_id])

    def scope_path(self, scope_id: int, sep: str = '.') -> str:
        """Dotted path from the root, e.g. 'top.cpu'; '' for the root."""
        parts = []
        while scope_id != ROOT_SCOPE_ID:
            scope = self.lookup_scope(scope_id)
            parts.append(scope.name)
            scope_id = scope.parent_scope_id
        return sep.join(reversed(parts))

    def variable_path(self, variable_id: int, sep: str = '.') -> str:
        variable = self.lookup_variable(variable_id)
        prefix = self.scope_path(variable.scope_id, sep)
        return f"{prefix}{sep}{variable.name}" if prefix else variable.name

    def walk(self, scope_id: int = ROOT_SCOPE_ID,
             depth: int = 0) -> Iterator[Tuple[int, Scope]]:
        """Depth-first (depth, scope) pairs below `scope_id`, declaration order."""
        stack = [(depth, child) for child in reversed(self.children(scope_id))]
        while stack:
            level, scope = stack.pop()
            yield level, scope
            stack.extend((level + 1, self.scopes[c])
                         for c in reversed(self._children[scope.scope_id]))

    # -------------------------------------------------------------------------
    # Stats
    # -------------------------------------------------------------------------

    @property
    def storage_count(self) -> int:
        return len(self.storages)

    @property
    def scope_count(self) -> int:
        return len(self.scopes)

    @property
    def variable_count(self) -> int:
        return len(self.variables)

    def summary(self) -> Dict[str, Any]:
        by_kind: Dict[str, int] = {}
        for s in self.storages.values():
            by_kind[s.logic_kind.label] = by_kind.get(s.logic_kind.label, 0) + 1
        return {
            'scopes': self.scope_count,
            'storages': self.storage_count,
            'variables': self.variable_count,
            'storage_bits': sum(s.width for s in self.storages.values()),
            'storages_by_kind': by_kind,
        }
