"""
Arithmetic helpers for the MCM/MCD quiz.

Greatest common divisor (MCD), least common multiple (MCM), primality,
prime factorization and the "magic formula" a * b = mcd(a, b) * mcm(a, b).
"""
from functools import reduce
from math import isqrt
from typing import Dict, Tuple

from .models import Calculation


class InconsistentFormulaError(ValueError):
    """Raised when mcd * mcm is not an exact multiple of the known number."""
    pass


def _gcd_pair(a: int, b: int) -> int:
    while b != 0:
        a, b = b, a % b
    return a


def _lcm_pair(a: int, b: int) -> int:
    return abs(a * b) // _gcd_pair(a, b)


def gcd(*numbers: int) -> int:
    """
    Greatest common divisor using the Euclidean algorithm.

    With more than two numbers the pairs are folded left to right:
    gcd(a, b, c) == gcd(gcd(a, b), c).

    Raises:
        ValueError: If no numbers are given
    """
    if not numbers:
        raise ValueError("gcd requires at least one number")
    return reduce(_gcd_pair, numbers)


def lcm(*numbers: int) -> int:
    """
    Least common multiple, |a * b| / gcd(a, b), folded left to right.

    Raises:
        ValueError: If no numbers are given
    """
    if not numbers:
        raise ValueError("lcm requires at least one number")
    return reduce(_lcm_pair, numbers)


def is_prime(n: int) -> bool:
    """Trial division by odd numbers up to the square root of n."""
    if n < 2:
        return False
    if n == 2:
        return True
    if n % 2 == 0:
        return False

    for divisor in range(3, isqrt(n) + 1, 2):
        if n % divisor == 0:
            return False
    return True


def prime_factorization(n: int) -> Dict[int, int]:
    """
    Decompose n into prime factors.

    Args:
        n: Number to decompose

    Returns:
        Mapping of prime factor to exponent, e.g. 360 -> {2: 3, 3: 2, 5: 1}
    """
    factors: Dict[int, int] = {}
    remaining = n

    while remaining != 0 and remaining % 2 == 0:
        factors[2] = factors.get(2, 0) + 1
        remaining //= 2

    divisor = 3
    while divisor * divisor <= remaining:
        while remaining % divisor == 0:
            factors[divisor] = factors.get(divisor, 0) + 1
            remaining //= divisor
        divisor += 2

    # Whatever is left above 2 has no divisor below its square root
    if remaining > 2:
        factors[remaining] = 1

    return factors


def are_coprime(a: int, b: int) -> bool:
    return gcd(a, b) == 1


def gcd_and_lcm(a: int, b: int) -> Tuple[int, int]:
    """
    Compute mcd and mcm together.

    The mcm is derived from the mcd through a * b = mcd * mcm instead of
    running a second Euclidean pass.

    Returns:
        Tuple of (gcd, lcm)
    """
    divisor = gcd(a, b)
    return divisor, abs(a * b) // divisor


def find_missing(known: int, gcd_value: int, lcm_value: int) -> int:
    """
    Solve the magic formula for the unknown number.

    Args:
        known: The number that is given
        gcd_value: mcd of the two numbers
        lcm_value: mcm of the two numbers

    Returns:
        The other number, (mcd * mcm) / known

    Raises:
        ValueError: If known is zero
        InconsistentFormulaError: If the division is not exact
    """
    if known == 0:
        raise ValueError("The known number cannot be zero")

    product = gcd_value * lcm_value
    missing, remainder = divmod(product, known)
    if remainder != 0:
        raise InconsistentFormulaError(
            f"mcd {gcd_value} x mcm {lcm_value} = {product} is not divisible by {known}"
        )
    return missing


def minutes_to_display(minutes: int) -> str:
    """
    Format a number of minutes as hours and minutes, in Spanish.

    90 -> "1 hora y 30 minutos", 120 -> "2 horas", 45 -> "45 minutos"
    """
    hours, mins = divmod(minutes, 60)
    hours_text = f"{hours} {'hora' if hours == 1 else 'horas'}"

    if hours == 0:
        return f"{mins} minutos"
    if mins == 0:
        return hours_text
    return f"{hours_text} y {mins} minutos"


def validate_positive_integers(*values) -> bool:
    """True if every value is an int (not a bool) greater than zero."""
    return all(
        isinstance(value, int) and not isinstance(value, bool) and value > 0
        for value in values
    )


def evaluate_calculation(calculation: Calculation) -> int:
    """
    Recompute the result a calculation descriptor claims.

    Only the descriptor's own step is evaluated; a second_step is a
    separate Calculation with its own result.

    Raises:
        ValueError: If the operation is unknown or its inputs are missing
    """
    operation = calculation.operation

    if operation == 'mcm':
        value = lcm(*calculation.numbers)
    elif operation == 'mcd':
        value = gcd(*calculation.numbers)
    elif operation == 'find_missing':
        known = calculation.known_values
        try:
            value = find_missing(known['a'], known['mcd'], known['mcm'])
        except KeyError as e:
            raise ValueError(f"find_missing calculation is missing {e}") from e
    elif operation == 'division':
        dividend, divisor = calculation.numbers
        value = dividend // divisor
    else:
        raise ValueError(f"Unknown calculation operation: {operation}")

    return value
