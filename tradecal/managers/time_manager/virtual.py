"""
Virtual time transform

Linear, invertible map between real time and calendar (virtual) time:

    virtual = (real - real_base) / ratio + virtual_base
    real    = (virtual - virtual_base) * ratio + real_base

``ratio`` is the real duration of one calendar day divided by 24 hours and
is kept as an exact Fraction, so converting back and forth is lossless.
Results are ints whenever the value is a whole millisecond.

Example: one_day_duration = 12h gives ratio 1/2, calendar time runs twice
as fast as real time and two trading days fit into one real day.
"""
from datetime import tzinfo
from fractions import Fraction
from typing import Optional, Union

from tradecal.core.enums import Strategy
from tradecal.core.exceptions import ConfigurationError
from tradecal.managers.time_manager.models import MILLIS_PER_DAY, VirtualTimeConfig
from tradecal.managers.time_manager.resolver import to_millis


Number = Union[int, float]


def _exact(value: Fraction) -> Number:
    if value.denominator == 1:
        return int(value)
    return float(value)


class IdentityTransform:
    """Calendar time equals real time"""

    strategy = Strategy.SYSTEM
    one_day_duration = MILLIS_PER_DAY
    time_ratio = Fraction(1)
    real_base = 0
    virtual_base = 0
    is_identity = True

    def to_virtual(self, real: Number) -> Number:
        return real

    def to_real(self, virtual: Number) -> Number:
        return virtual

    def scale_delay(self, delay: Number) -> Number:
        return delay

    def __repr__(self) -> str:
        return "IdentityTransform()"


class VirtualTimeTransform:
    """Dilated calendar time anchored at (real_base, virtual_base)"""

    is_identity = False

    def __init__(self, strategy: Strategy, one_day_duration: int, real_base: Number, virtual_base: Number):
        if one_day_duration <= 0:
            raise ConfigurationError(f"one_day_duration must be positive, got {one_day_duration}")
        self.strategy = strategy
        self.one_day_duration = one_day_duration
        self.time_ratio = Fraction(one_day_duration, MILLIS_PER_DAY)
        self.real_base = real_base
        self.virtual_base = virtual_base

    @classmethod
    def from_config(
        cls,
        virtual: Optional[VirtualTimeConfig],
        start_time: Number,
        tz: tzinfo,
    ) -> Union["VirtualTimeTransform", IdentityTransform]:
        """Build the transform described by a calendar's virtual block

        Args:
            virtual: Virtual time configuration (None or disabled -> identity)
            start_time: Calendar start instant, the START anchor and the
                default ``standard``
            tz: Calendar timezone for naive anchor strings

        Raises:
            ConfigurationError: Unknown strategy, missing CUSTOM anchor or
                unreadable anchor value
        """
        if virtual is None or not virtual.enabled:
            return IdentityTransform()

        try:
            strategy = Strategy(virtual.strategy)
        except ValueError as e:
            raise ConfigurationError(f"Invalid virtual time strategy: {virtual.strategy!r}") from e

        if strategy == Strategy.SYSTEM:
            return cls(Strategy.SYSTEM, MILLIS_PER_DAY, 0, 0)

        virtual_base = cls._anchor(virtual.standard, tz, "standard") if virtual.standard is not None else start_time
        if strategy == Strategy.STANDARD:
            real_base = virtual_base
        elif strategy == Strategy.START:
            real_base = start_time
        elif strategy == Strategy.CUSTOM:
            if virtual.custom is None:
                raise ConfigurationError("Strategy CUSTOM requires the 'custom' anchor")
            real_base = cls._anchor(virtual.custom, tz, "custom")
        else:
            raise ConfigurationError(f"Invalid virtual time strategy: {strategy!r}")

        return cls(strategy, virtual.one_day_duration, real_base, virtual_base)

    @staticmethod
    def _anchor(value, tz: tzinfo, field_name: str) -> Number:
        try:
            return to_millis(value, tz)
        except (ValueError, OverflowError) as e:
            raise ConfigurationError(f"Invalid virtual '{field_name}' anchor {value!r}: {e}") from e

    def to_virtual(self, real: Number) -> Number:
        """Real timestamp -> calendar timestamp"""
        return _exact((Fraction(real) - Fraction(self.real_base)) / self.time_ratio + Fraction(self.virtual_base))

    def to_real(self, virtual: Number) -> Number:
        """Calendar timestamp -> real timestamp"""
        return _exact((Fraction(virtual) - Fraction(self.virtual_base)) * self.time_ratio + Fraction(self.real_base))

    def scale_delay(self, delay: Number) -> Number:
        """Calendar-coordinate duration -> real duration"""
        return _exact(Fraction(delay) * self.time_ratio)

    def __repr__(self) -> str:
        return (
            f"VirtualTimeTransform(strategy={self.strategy.value}, ratio={self.time_ratio}, "
            f"real_base={self.real_base}, virtual_base={self.virtual_base})"
        )
