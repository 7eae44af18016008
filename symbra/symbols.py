"""
Interned symbols.

A Symbol is identified by its name and commutativity tag. Constructing the
same (name, tag) twice returns the same object, so symbol equality is an
identity check:

    Symbol("x") is Symbol("x")                              # True
    Symbol("A", Commutativity.MATRIX) is Symbol("A")        # False

The interning table is shared by every thread; a lock guards insertion.
"""

from enum import Enum
from typing import Dict, Tuple
import threading


class Commutativity(Enum):
    """How a symbol behaves inside a product."""

    SCALAR = "scalar"
    MATRIX = "matrix"
    OPERATOR = "operator"
    QUATERNION = "quaternion"

    @property
    def commutative(self) -> bool:
        return self is Commutativity.SCALAR


class Symbol:
    """An interned (name, commutativity) pair."""

    __slots__ = ("name", "commutativity")

    _table: Dict[Tuple[str, Commutativity], "Symbol"] = {}
    _lock = threading.Lock()

    def __new__(cls, name: str, commutativity: Commutativity = Commutativity.SCALAR):
        if not isinstance(name, str) or not name:
            raise ValueError(f"symbol name must be a non-empty string, got {name!r}")
        key = (name, commutativity)
        existing = cls._table.get(key)
        if existing is not None:
            return existing
        with cls._lock:
            existing = cls._table.get(key)
            if existing is None:
                existing = super().__new__(cls)
                object.__setattr__(existing, "name", name)
                object.__setattr__(existing, "commutativity", commutativity)
                cls._table[key] = existing
            return existing

    def __setattr__(self, key, value):
        raise AttributeError("Symbol is immutable")

    def __reduce__(self):
        return (Symbol, (self.name, self.commutativity))

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    @property
    def is_commutative(self) -> bool:
        return self.commutativity.commutative

    def __repr__(self):
        if self.commutativity is Commutativity.SCALAR:
            return f"Symbol({self.name!r})"
        return f"Symbol({self.name!r}, {self.commutativity})"

    def __str__(self):
        return self.name


def interned_count() -> int:
    """Number of distinct symbols created so far."""
    return len(Symbol._table)
