"""
Integration outcomes.

integrate() always returns one of three values, never raises for a
mathematical reason:

    Elementary(antiderivative)      an antiderivative was found
    ProvenNonElementary(reason)     no elementary antiderivative exists
    Unresolved(reason, exhausted)   the procedures could not decide

Unresolved(exhausted=True) means a resource bound was hit; retrying with
larger limits may help.
"""

from dataclasses import dataclass
from typing import Optional

from .expr import Expr


class IntegrationResult:
    """Common base of the three outcomes."""

    antiderivative: Optional[Expr] = None

    @property
    def is_elementary(self) -> bool:
        return isinstance(self, Elementary)

    @property
    def is_proven_nonelementary(self) -> bool:
        return isinstance(self, ProvenNonElementary)

    @property
    def is_unresolved(self) -> bool:
        return isinstance(self, Unresolved)


@dataclass(frozen=True)
class Elementary(IntegrationResult):
    antiderivative: Expr

    def __str__(self):
        return f"Elementary({self.antiderivative})"


@dataclass(frozen=True)
class ProvenNonElementary(IntegrationResult):
    reason: str = ""

    def __str__(self):
        return f"ProvenNonElementary({self.reason})"


@dataclass(frozen=True)
class Unresolved(IntegrationResult):
    reason: str = ""
    exhausted: bool = False

    def __str__(self):
        suffix = ", exhausted" if self.exhausted else ""
        return f"Unresolved({self.reason}{suffix})"
