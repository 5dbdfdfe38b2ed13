"""
Hold duration to prize tier classification.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from prize_vending.core.exceptions import ConfigurationError
from prize_vending.core.value_objects import Tier


@dataclass(frozen=True)
class TierThreshold:
    """Minimum hold duration (inclusive) that wins ``tier``."""

    tier: Tier
    min_duration_ms: int


class ThresholdTable:
    """
    Ascending, non-overlapping duration thresholds.

    A duration wins the highest tier whose threshold it reaches;
    durations below the lowest threshold win nothing.
    """

    def __init__(self, thresholds: Iterable[TierThreshold]) -> None:
        ordered = sorted(thresholds, key=lambda t: t.min_duration_ms)
        if not ordered:
            raise ConfigurationError("Threshold table is empty")

        seen_tiers: set[Tier] = set()
        previous: Optional[int] = None
        for threshold in ordered:
            if threshold.min_duration_ms < 0:
                raise ConfigurationError(f"Negative threshold for {threshold.tier.value}")
            if previous is not None and threshold.min_duration_ms == previous:
                raise ConfigurationError(
                    f"Duplicate threshold {threshold.min_duration_ms}ms"
                )
            if threshold.tier in seen_tiers:
                raise ConfigurationError(f"Tier {threshold.tier.value} listed twice")
            seen_tiers.add(threshold.tier)
            previous = threshold.min_duration_ms

        self._thresholds = tuple(ordered)

    @classmethod
    def from_mapping(cls, mapping: dict[str, int]) -> "ThresholdTable":
        """
        Build a table from ``{"silver": 30000, "gold": 60000}``.

        Raises:
            ConfigurationError: On unknown tier names or invalid values.
        """
        try:
            return cls(TierThreshold(Tier(name), int(value)) for name, value in mapping.items())
        except ValueError as e:
            raise ConfigurationError(f"Invalid threshold table: {e}") from e

    @property
    def thresholds(self) -> tuple[TierThreshold, ...]:
        return self._thresholds

    def classify(self, duration_ms: int) -> Optional[Tier]:
        """
        Tier won by holding for ``duration_ms``.

        Returns:
            The tier, or None for no prize.
        """
        won: Optional[Tier] = None
        for threshold in self._thresholds:
            if duration_ms >= threshold.min_duration_ms:
                won = threshold.tier
            else:
                break
        return won

    def to_dict(self) -> dict[str, int]:
        return {t.tier.value: t.min_duration_ms for t in self._thresholds}


# Single canonical table used by every dispensing path
DEFAULT_THRESHOLDS: dict[str, int] = {"silver": 30_000, "gold": 60_000}
