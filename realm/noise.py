"""Seeded 2D Perlin noise used for terrain bands."""

from __future__ import annotations

import math
import random


class PerlinNoise:
    """Classic gradient noise with a permutation table drawn from ``rng``."""

    __slots__ = ("_perm",)

    def __init__(self, rng: random.Random) -> None:
        table = list(range(256))
        rng.shuffle(table)
        self._perm = table + table

    @staticmethod
    def _fade(t: float) -> float:
        return t * t * t * (t * (t * 6 - 15) + 10)

    @staticmethod
    def _lerp(a: float, b: float, t: float) -> float:
        return a + t * (b - a)

    @staticmethod
    def _grad(hash_value: int, x: float, y: float) -> float:
        h = hash_value & 3
        u = x if h < 2 else y
        v = y if h < 2 else x
        return (u if h & 1 == 0 else -u) + (v if h & 2 == 0 else -v)

    def noise(self, x: float, y: float) -> float:
        """Single octave sample, roughly in ``[-1, 1]``."""

        xi = math.floor(x) & 255
        yi = math.floor(y) & 255
        xf = x - math.floor(x)
        yf = y - math.floor(y)
        u = self._fade(xf)
        v = self._fade(yf)

        perm = self._perm
        aa = perm[perm[xi] + yi]
        ab = perm[perm[xi] + yi + 1]
        ba = perm[perm[xi + 1] + yi]
        bb = perm[perm[xi + 1] + yi + 1]

        x1 = self._lerp(self._grad(aa, xf, yf), self._grad(ba, xf - 1, yf), u)
        x2 = self._lerp(self._grad(ab, xf, yf - 1), self._grad(bb, xf - 1, yf - 1), u)
        return self._lerp(x1, x2, v)

    def octave(self, x: float, y: float, octaves: int = 4, persistence: float = 0.5) -> float:
        """Sum ``octaves`` layers and normalise back into ``[-1, 1]``."""

        total = 0.0
        frequency = 1.0
        amplitude = 1.0
        max_value = 0.0
        for _ in range(max(1, octaves)):
            total += self.noise(x * frequency, y * frequency) * amplitude
            max_value += amplitude
            amplitude *= persistence
            frequency *= 2
        return total / max_value


__all__ = ["PerlinNoise"]
