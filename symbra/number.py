"""
Exact number domain for symbolic computation.

A Number is a tagged value: small integer, big integer, rational, float or
complex. Exact values stay exact under +, -, *, / and integer powers;
rational powers are exact only when the root exists.

Examples:
    Number(1, 2)             # => 1 + 2i
    Number(Fraction(6, 4))   # => 3/2
    Number(3) / Number(6)    # => 1/2
    Number(2).power(Number(Fraction(1, 2)))  # => None (not exact)
    Number(4).power(Number(Fraction(1, 2)))  # => 2
"""

from enum import Enum
from fractions import Fraction
from typing import Optional, Tuple, Union
import cmath

RealType = Union[int, Fraction, float]

# Bit width of a native machine integer; wider values are tagged BIG_INTEGER
NATIVE_INT_BITS = 63


class NumberKind(Enum):
    """Tag reported by Number.kind."""

    SMALL_INTEGER = "small_integer"
    BIG_INTEGER = "big_integer"
    RATIONAL = "rational"
    FLOAT = "float"
    COMPLEX = "complex"


def _normalize_real(value) -> RealType:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, Fraction):
        return value.numerator if value.denominator == 1 else value
    if isinstance(value, float):
        return value
    raise TypeError(f"unsupported real value: {value!r}")


def _div_real(a: RealType, b: RealType) -> RealType:
    if isinstance(a, float) or isinstance(b, float):
        return a / b
    return _normalize_real(Fraction(a) / Fraction(b))


def integer_nth_root(n: int, k: int) -> Optional[int]:
    """Return r with r**k == n for non-negative n, or None if n is not a perfect power."""
    if n < 0:
        return None
    if n < 2:
        return n
    x = 1 << ((n.bit_length() + k - 1) // k)
    while True:
        y = ((k - 1) * x + n // x ** (k - 1)) // k
        if y >= x:
            break
        x = y
    return x if x ** k == n else None


class Number:
    """
    Immutable exact-or-float number, possibly complex.

    The value is stored as a real and an imaginary part, each an int,
    Fraction or float. Rationals are kept in lowest terms with a positive
    denominator (Fraction guarantees this) and collapse to int when the
    denominator is 1.
    """

    __slots__ = ("re", "im")

    def __init__(self, re=0, im=0):
        if isinstance(re, Number):
            re, im = re.re, re.im
        elif isinstance(re, complex):
            re, im = re.real, re.imag
        elif isinstance(re, str):
            re = Fraction(re)
        re = _normalize_real(re)
        im = _normalize_real(im)
        if im == 0:
            im = 0
        elif isinstance(re, float) or isinstance(im, float):
            re, im = float(re), float(im)
        object.__setattr__(self, "re", re)
        object.__setattr__(self, "im", im)

    def __setattr__(self, key, value):
        raise AttributeError("Number is immutable")

    def __reduce__(self):
        return (Number, (self.re, self.im))

    # ------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------

    @property
    def kind(self) -> NumberKind:
        if self.im != 0:
            return NumberKind.COMPLEX
        if isinstance(self.re, float):
            return NumberKind.FLOAT
        if isinstance(self.re, Fraction):
            return NumberKind.RATIONAL
        if -(1 << NATIVE_INT_BITS) <= self.re < (1 << NATIVE_INT_BITS):
            return NumberKind.SMALL_INTEGER
        return NumberKind.BIG_INTEGER

    def is_zero(self) -> bool:
        return self.re == 0 and self.im == 0

    def is_one(self) -> bool:
        return self.re == 1 and self.im == 0

    def is_minus_one(self) -> bool:
        return self.re == -1 and self.im == 0

    def is_real(self) -> bool:
        return self.im == 0

    def is_exact(self) -> bool:
        return not isinstance(self.re, float) and not isinstance(self.im, float)

    def is_integer(self) -> bool:
        """True for exact integers only (2.0 is a float, not an integer)."""
        return self.im == 0 and isinstance(self.re, int)

    def is_rational(self) -> bool:
        """True for exact real values (integers included)."""
        return self.im == 0 and isinstance(self.re, (int, Fraction))

    def is_negative(self) -> bool:
        return self.im == 0 and self.re < 0

    def is_positive(self) -> bool:
        return self.im == 0 and self.re > 0

    @property
    def numerator(self) -> int:
        if not self.is_rational():
            raise ValueError(f"{self} is not rational")
        return Fraction(self.re).numerator

    @property
    def denominator(self) -> int:
        if not self.is_rational():
            raise ValueError(f"{self} is not rational")
        return Fraction(self.re).denominator

    def real_part(self) -> "Number":
        return Number(self.re)

    def imag_part(self) -> "Number":
        return Number(self.im)

    def conjugate(self) -> "Number":
        return Number(self.re, -self.im)

    # ------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------

    @staticmethod
    def _coerce(other) -> Optional["Number"]:
        if isinstance(other, Number):
            return other
        if isinstance(other, (int, Fraction, float, complex)):
            return Number(other)
        return None

    def __add__(self, other):
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return Number(self.re + o.re, self.im + o.im)

    __radd__ = __add__

    def __sub__(self, other):
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return Number(self.re - o.re, self.im - o.im)

    def __rsub__(self, other):
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return o - self

    def __mul__(self, other):
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        if self.im == 0 and o.im == 0:
            return Number(self.re * o.re)
        return Number(self.re * o.re - self.im * o.im,
                      self.re * o.im + self.im * o.re)

    __rmul__ = __mul__

    def __truediv__(self, other):
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        if o.is_zero():
            raise ZeroDivisionError(f"division of {self} by zero")
        if o.im == 0:
            return Number(_div_real(self.re, o.re), _div_real(self.im, o.re))
        denom = o.re * o.re + o.im * o.im
        return Number(_div_real(self.re * o.re + self.im * o.im, denom),
                      _div_real(self.im * o.re - self.re * o.im, denom))

    def __rtruediv__(self, other):
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return o / self

    def __neg__(self):
        return Number(-self.re, -self.im)

    def __pos__(self):
        return self

    def __abs__(self):
        if self.im == 0:
            return Number(abs(self.re))
        squared = Number(self.re * self.re + self.im * self.im)
        exact = squared.power(Number(Fraction(1, 2)))
        if exact is not None:
            return exact
        return Number(abs(complex(self)))

    def _int_power(self, n: int) -> Optional["Number"]:
        if n < 0:
            if self.is_zero():
                return None
            return (Number(1) / self)._int_power(-n)
        if self.im == 0:
            if isinstance(self.re, float):
                return Number(self.re ** n)
            return Number(Fraction(self.re) ** n)
        result = Number(1)
        base = self
        while n:
            if n & 1:
                result = result * base
            base = base * base
            n >>= 1
        return result

    def power(self, exponent: "Number") -> Optional["Number"]:
        """
        Raise to a Number exponent.

        Returns None when the result is not representable as a Number
        without losing exactness (e.g. 2^(1/2), or a negative base under
        a fractional exponent), or when it is undefined (0^-1).
        """
        exponent = self._coerce(exponent)
        if exponent.is_integer():
            return self._int_power(exponent.re)
        if not self.is_exact() or not exponent.is_exact():
            if self.is_zero():
                return Number(0.0) if exponent.is_positive() else None
            if self.is_real() and self.re > 0 and exponent.is_real():
                return Number(float(self.re) ** float(exponent.re))
            try:
                return Number(complex(self) ** complex(exponent))
            except (ZeroDivisionError, OverflowError):
                return None
        if exponent.is_rational() and self.is_rational():
            if self.re < 0:
                return None
            if self.re == 0:
                return Number(0) if exponent.re > 0 else None
            p, q = exponent.numerator, exponent.denominator
            base = Fraction(self.re)
            num_root = integer_nth_root(base.numerator, q)
            den_root = integer_nth_root(base.denominator, q)
            if num_root is None or den_root is None:
                return None
            return Number(Fraction(num_root, den_root))._int_power(p)
        return None

    # ------------------------------------------------------------
    # Comparison and conversion
    # ------------------------------------------------------------

    def __eq__(self, other):
        o = self._coerce(other)
        if o is None:
            return NotImplemented
        return self.re == o.re and self.im == o.im

    def __hash__(self):
        if self.im == 0:
            return hash(self.re)
        return hash((self.re, self.im))

    def _real_pair(self, other) -> Tuple[RealType, RealType]:
        o = self._coerce(other)
        if o is None or self.im != 0 or o.im != 0:
            raise TypeError(f"cannot order complex values {self} and {other}")
        return self.re, o.re

    def __lt__(self, other):
        a, b = self._real_pair(other)
        return a < b

    def __le__(self, other):
        a, b = self._real_pair(other)
        return a <= b

    def __gt__(self, other):
        a, b = self._real_pair(other)
        return a > b

    def __ge__(self, other):
        a, b = self._real_pair(other)
        return a >= b

    def __float__(self):
        if self.im != 0:
            raise TypeError(f"cannot convert complex {self} to float")
        return float(self.re)

    def __complex__(self):
        return complex(float(self.re), float(self.im))

    def __int__(self):
        if not self.is_integer():
            raise TypeError(f"{self} is not an integer")
        return self.re

    def to_python(self):
        """Return the closest Python value: int, Fraction, float or complex."""
        if self.im != 0:
            return complex(self)
        return self.re

    def to_float(self) -> "Number":
        """Return an inexact copy of this number."""
        if self.im != 0:
            return Number(complex(self))
        return Number(float(self.re))

    def sort_tuple(self) -> Tuple:
        """Key used by the canonical expression order."""
        return (self.re, self.im, 0 if self.is_exact() else 1)

    @staticmethod
    def _format_real(value: RealType) -> str:
        if isinstance(value, Fraction):
            return f"{value.numerator}/{value.denominator}"
        if isinstance(value, float):
            return repr(value)
        return str(value)

    def __str__(self):
        if self.im == 0:
            return self._format_real(self.re)
        return f"(complex {self._format_real(self.re)} {self._format_real(self.im)})"

    def __repr__(self):
        return f"Number({self})"


ZERO = Number(0)
ONE = Number(1)
MINUS_ONE = Number(-1)
HALF = Number(Fraction(1, 2))
IMAGINARY_UNIT = Number(0, 1)


def as_number(value) -> Number:
    """Coerce a Python numeric value to a Number."""
    if isinstance(value, Number):
        return value
    return Number(value)


def complex_value(value: Number) -> complex:
    """Convert for use with cmath evaluators."""
    return complex(value)


def float_or_complex(value: Number) -> Union[float, complex]:
    """Convert to float when real, to complex otherwise."""
    if value.is_real():
        return float(value.re)
    return complex(value)


def from_float_result(value) -> Number:
    """Wrap the result of a math/cmath evaluator, dropping a negligible imaginary part."""
    if isinstance(value, complex):
        if value.imag == 0 or abs(value.imag) <= 1e-15 * max(1.0, abs(value.real)):
            return Number(float(value.real))
        return Number(value)
    if isinstance(value, bool):
        return Number(int(value))
    return Number(float(value))


def is_finite(value: Number) -> bool:
    if value.is_exact():
        return True
    return cmath.isfinite(complex(value))
