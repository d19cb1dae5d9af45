"""
Stats data models for the Team Competition.

Immutable value types for the lifetime stats pulled from the external stats API and
the derived Team Competition (TC) stats. Every arithmetic operation returns a new
instance and clamps each numeric field at zero independently, so a negative offset
or an out-of-date baseline can never produce negative points or units.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal, ROUND_FLOOR
from typing import Optional

DEFAULT_POINTS = 0
DEFAULT_MULTIPLIED_POINTS = 0
DEFAULT_UNITS = 0

_HALF = Decimal('0.5')


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def round_half_up(value) -> int:
    """Round to the nearest integer, with .5 always rounding towards positive infinity."""
    return int((Decimal(str(value)) + _HALF).to_integral_value(rounding=ROUND_FLOOR))


def apply_multiplier(points: int, multiplier: float) -> int:
    """Scale raw points by a hardware multiplier, e.g. 1,000 points at 1.5x -> 1,500."""
    return round_half_up(Decimal(points) * Decimal(str(multiplier)))


@dataclass(frozen=True)
class SourceStats:
    """Lifetime points and units as reported by the external stats API."""
    points: int
    units: int


@dataclass(frozen=True)
class Stats:
    """Lifetime stats for a user at a point in time (used for both initial and total stats)."""
    user_id: int
    timestamp: datetime = field(default_factory=utc_now)
    points: int = DEFAULT_POINTS
    units: int = DEFAULT_UNITS

    def __post_init__(self):
        if self.points < 0 or self.units < 0:
            raise ValueError(f"Stats cannot be negative: points={self.points}, units={self.units}")

    @classmethod
    def empty(cls, user_id: int = 0) -> "Stats":
        return cls(user_id=user_id)

    @classmethod
    def create_now(cls, user_id: int, points: int, units: int) -> "Stats":
        return cls(user_id=user_id, timestamp=utc_now(), points=points, units=units)

    def is_empty(self) -> bool:
        return self.points == DEFAULT_POINTS and self.units == DEFAULT_UNITS

    def subtract(self, other: "Stats") -> "Stats":
        """Difference between two snapshots, keeping this snapshot's user and timestamp."""
        return replace(
            self,
            points=max(DEFAULT_POINTS, self.points - other.points),
            units=max(DEFAULT_UNITS, self.units - other.units),
        )


@dataclass(frozen=True)
class TcStats(Stats):
    """Stats for the current Team Competition period, including hardware-multiplied points."""
    multiplied_points: int = DEFAULT_MULTIPLIED_POINTS

    def __post_init__(self):
        super().__post_init__()
        if self.multiplied_points < 0:
            raise ValueError(f"Multiplied points cannot be negative: {self.multiplied_points}")

    @classmethod
    def empty(cls, user_id: int = 0) -> "TcStats":
        return cls(user_id=user_id)

    @classmethod
    def from_stats(cls, stats: Stats, multiplier: float) -> "TcStats":
        """Convert a raw points/units delta into TC stats using the hardware multiplier."""
        return cls(
            user_id=stats.user_id,
            timestamp=stats.timestamp,
            points=stats.points,
            multiplied_points=apply_multiplier(stats.points, multiplier),
            units=stats.units,
        )

    def is_empty(self) -> bool:
        return self.multiplied_points == DEFAULT_MULTIPLIED_POINTS and super().is_empty()

    def add(self, offset: "OffsetStats") -> "TcStats":
        """
        Apply an offset to these stats.

        Offsets may be negative; any field that would drop below zero is set to zero.
        """
        return replace(
            self,
            points=max(DEFAULT_POINTS, self.points + (offset.points_offset or 0)),
            multiplied_points=max(
                DEFAULT_MULTIPLIED_POINTS,
                self.multiplied_points + (offset.multiplied_points_offset or 0),
            ),
            units=max(DEFAULT_UNITS, self.units + offset.units_offset),
        )

    def subtract(self, other: "TcStats") -> "TcStats":
        """Subtract another TC stats instance; any field that would drop below zero is set to zero."""
        return replace(
            self,
            points=max(DEFAULT_POINTS, self.points - other.points),
            multiplied_points=max(
                DEFAULT_MULTIPLIED_POINTS,
                self.multiplied_points - getattr(other, 'multiplied_points', DEFAULT_MULTIPLIED_POINTS),
            ),
            units=max(DEFAULT_UNITS, self.units - other.units),
        )


@dataclass(frozen=True)
class OffsetStats:
    """
    Signed correction applied on top of a user's raw TC stats.

    The two points fields are optional: ``None`` means "not provided", which is
    different from an explicit offset of zero. When only one side is provided it can
    be derived from the other with a hardware multiplier.
    """
    points_offset: Optional[int] = None
    multiplied_points_offset: Optional[int] = None
    units_offset: int = DEFAULT_UNITS

    @classmethod
    def empty(cls) -> "OffsetStats":
        return cls(DEFAULT_POINTS, DEFAULT_MULTIPLIED_POINTS, DEFAULT_UNITS)

    @classmethod
    def from_tc_stats(cls, tc_stats: TcStats) -> "OffsetStats":
        """An offset that exactly reproduces the given TC stats when applied to a zeroed delta."""
        return cls(tc_stats.points, tc_stats.multiplied_points, tc_stats.units)

    @classmethod
    def from_request(cls, points_offset: int = 0, multiplied_points_offset: int = 0, units_offset: int = 0) -> "OffsetStats":
        """
        Build an offset from admin input, where a points value of 0 means "not provided".

        Admin commands accept plain integers, so a zero there cannot be told apart from an
        omitted value; it is treated as omitted so the other side can be derived.
        """
        return cls(
            points_offset=points_offset if points_offset != DEFAULT_POINTS else None,
            multiplied_points_offset=multiplied_points_offset if multiplied_points_offset != DEFAULT_MULTIPLIED_POINTS else None,
            units_offset=units_offset,
        )

    def is_empty(self) -> bool:
        return (
            (self.points_offset or DEFAULT_POINTS) == DEFAULT_POINTS
            and (self.multiplied_points_offset or DEFAULT_MULTIPLIED_POINTS) == DEFAULT_MULTIPLIED_POINTS
            and self.units_offset == DEFAULT_UNITS
        )

    def subtract(self, tc_stats: TcStats) -> "OffsetStats":
        """Offset reduced by the given TC stats, with a missing points side counted as zero. May go negative."""
        return OffsetStats(
            points_offset=(self.points_offset or DEFAULT_POINTS) - tc_stats.points,
            multiplied_points_offset=(self.multiplied_points_offset or DEFAULT_MULTIPLIED_POINTS) - tc_stats.multiplied_points,
            units_offset=self.units_offset - tc_stats.units,
        )

    def is_missing_points_or_multiplied_points(self) -> bool:
        return (self.points_offset is None) != (self.multiplied_points_offset is None)

    def with_hardware_multiplier(self, multiplier: float) -> "OffsetStats":
        """
        Fill in whichever points side was not provided, using the hardware multiplier.

        No change is made if the offset is empty, or if both points sides are already set.
        """
        if self.is_empty() or not self.is_missing_points_or_multiplied_points():
            return self

        if self.points_offset is None:
            # Offset only included multiplied points
            if not multiplier:
                return replace(self, points_offset=DEFAULT_POINTS)
            points_offset = round_half_up(Decimal(self.multiplied_points_offset) / Decimal(str(multiplier)))
            return replace(self, points_offset=points_offset)

        # Offset only included non-multiplied points
        return replace(self, multiplied_points_offset=apply_multiplier(self.points_offset, multiplier))


@dataclass(frozen=True)
class RetiredTcStats:
    """Frozen TC stats for a user who has left a team, still counted towards that team."""
    team_id: int
    user_id: int
    display_name: str
    points: int = DEFAULT_POINTS
    multiplied_points: int = DEFAULT_MULTIPLIED_POINTS
    units: int = DEFAULT_UNITS
    timestamp: datetime = field(default_factory=utc_now)
    retired_user_id: Optional[int] = None

    @classmethod
    def create(cls, team_id: int, display_name: str, tc_stats: TcStats) -> "RetiredTcStats":
        return cls(
            team_id=team_id,
            user_id=tc_stats.user_id,
            display_name=display_name,
            points=tc_stats.points,
            multiplied_points=tc_stats.multiplied_points,
            units=tc_stats.units,
            timestamp=tc_stats.timestamp,
        )

    def is_empty(self) -> bool:
        return (
            self.points == DEFAULT_POINTS
            and self.multiplied_points == DEFAULT_MULTIPLIED_POINTS
            and self.units == DEFAULT_UNITS
        )
