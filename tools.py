from typing import Iterable


class MathTools:
    """Provides essential mathematical utilities for workout calculations."""

    EPL_COEFF: float = 0.0333

    @classmethod
    def epley_1rm(cls, weight: float, reps: int) -> float:
        """Return the estimated one-rep max using the Epley formula."""
        if reps < 0:
            raise ValueError("reps must be non-negative")
        rep_term = min(reps, 8)
        return weight * (1 + cls.EPL_COEFF * rep_term)

    @staticmethod
    def volume(sets: Iterable[tuple[int, float]]) -> float:
        """Compute training volume as the sum of reps times weight."""
        vol = 0.0
        for reps, weight in sets:
            vol += reps * weight
        return vol

    @staticmethod
    def max_weight(sets: Iterable[tuple[int, float]]) -> float:
        """Heaviest weight across ``sets`` or 0.0 when empty."""
        return max((float(weight) for _reps, weight in sets), default=0.0)

    @staticmethod
    def max_reps(sets: Iterable[tuple[int, float]]) -> int:
        """Highest rep count across ``sets`` or 0 when empty."""
        return max((int(reps) for reps, _weight in sets), default=0)

    @staticmethod
    def percentage_change(current: float, previous: float) -> float:
        """Relative change in percent, 0.0 when ``previous`` is zero."""
        if previous == 0:
            return 0.0
        return (current - previous) / previous * 100

    @classmethod
    def best_1rm(cls, sets: Iterable[tuple[int, float]]) -> float:
        """Highest Epley estimate across ``sets``."""
        return max(
            (cls.epley_1rm(float(weight), int(reps)) for reps, weight in sets),
            default=0.0,
        )
