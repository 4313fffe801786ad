"""
Reward randomization helpers.
"""

import math
import random
from typing import Optional, Tuple


class MathService:
    """Produces skew-normal variates to add controlled variance to rewards."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def skew_normal(self, mean: float, deviation: float, skewness: float = 0) -> float:
        """
        Draw from a skew-normal distribution.

        With `skewness == 0` this is a plain normal draw `mean + deviation * u0`.
        Otherwise the second variate is mixed in with `coeff = s / sqrt(1 + s**2)`
        and the sign of the first variate decides the side of the skew.
        """
        u0, v = self.random_variates()
        if skewness == 0:
            return mean + deviation * u0

        coeff = skewness / math.sqrt(1 + skewness * skewness)
        u1 = coeff * u0 + math.sqrt(1 - coeff * coeff) * v
        z = u1 if u0 >= 0 else -u1
        return mean + deviation * z

    def random_variates(self) -> Tuple[float, float]:
        """Two independent unit-normal variates (Box-Muller)."""
        u1 = 0.0
        u2 = 0.0
        while u1 == 0:
            u1 = self.rng.random()
        while u2 == 0:
            u2 = self.rng.random()

        mag = math.sqrt(-2.0 * math.log(u1))
        direction = 2.0 * math.pi * u2
        return mag * math.cos(direction), mag * math.sin(direction)
