"""
Exceptions raised by symbra.

Failed matches are not errors: match() returns NoMatch and match_all()
yields nothing. Likewise ProvenNonElementary and Unresolved are integration
outcomes (see symbra.integration), not exceptions.
"""


class SymbraError(Exception):
    """Base class for all symbra errors."""


class DomainError(SymbraError, ValueError):
    """An argument lies outside a function's declared domain, e.g. ln(-1) under strict evaluation."""

    def __init__(self, function: str, argument, message: str = ""):
        self.function = function
        self.argument = argument
        super().__init__(message or f"{function}({argument}) is outside the domain of {function}")


class ResourceExhausted(SymbraError, RuntimeError):
    """A recursion, step or size bound was exceeded."""

    def __init__(self, resource: str, limit: int, message: str = ""):
        self.resource = resource
        self.limit = limit
        super().__init__(message or f"{resource} limit of {limit} exceeded")


class RegistryFrozenError(SymbraError, RuntimeError):
    """register_function() was called after the default registry was built."""
