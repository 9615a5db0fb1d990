from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from timetabler.core.exceptions import ConfigurationError
from timetabler.schemas.grid import GridConfig


@dataclass(frozen=True)
class TimeSlot:
    index: int
    day: str
    day_index: int
    period_index: int
    label: str
    start_time: str
    end_time: str

    @property
    def key(self) -> str:
        return f"{self.day} {self.label}"


class TimeGrid:
    """Addressable slot space of one grid configuration.

    Slots are ordered by day, then period; ``TimeSlot.index`` is the stable
    position in that order and is what the rest of the engine keys on.
    Instances are read-only once built and can be shared between runs.
    """

    def __init__(self, config: GridConfig | None = None) -> None:
        self.config = config or GridConfig()
        periods = self.config.teaching_periods
        if not periods:
            raise ConfigurationError("Grid has no teaching periods")

        self.days: tuple[str, ...] = tuple(self.config.days)
        self.period_labels: tuple[str, ...] = tuple(period.label for period in periods)

        slots: list[TimeSlot] = []
        for day_index, day in enumerate(self.days):
            for period_index, period in enumerate(periods):
                slots.append(
                    TimeSlot(
                        index=len(slots),
                        day=day,
                        day_index=day_index,
                        period_index=period_index,
                        label=period.label,
                        start_time=period.start_time,
                        end_time=period.end_time,
                    )
                )
        self.slots: tuple[TimeSlot, ...] = tuple(slots)
        self._by_position = {(slot.day, slot.period_index): slot for slot in self.slots}
        self.double_slot_pairs: tuple[tuple[int, int], ...] = self._resolve_double_slot_pairs()
        self._contiguous_pairs = tuple(
            (self._by_position[(day, first)], self._by_position[(day, second)])
            for day in self.days
            for first, second in self.double_slot_pairs
        )

    def _resolve_double_slot_pairs(self) -> tuple[tuple[int, int], ...]:
        if self.config.double_slot_pairs is not None:
            return tuple(tuple(pair) for pair in self.config.double_slot_pairs)

        pairs: list[tuple[int, int]] = []
        teaching_index = -1
        previous_was_teaching = False
        for period in self.config.periods:
            if period.is_break:
                previous_was_teaching = False
                continue
            teaching_index += 1
            if previous_was_teaching:
                pairs.append((teaching_index - 1, teaching_index))
            previous_was_teaching = True
        return tuple(pairs)

    def __len__(self) -> int:
        return len(self.slots)

    def __iter__(self) -> Iterator[TimeSlot]:
        return iter(self.slots)

    @property
    def total_slots(self) -> int:
        return len(self.slots)

    @property
    def periods_per_day(self) -> int:
        return len(self.period_labels)

    def slot_at(self, day: str, period_index: int) -> TimeSlot:
        try:
            return self._by_position[(day, period_index)]
        except KeyError:
            raise KeyError(f"No slot for {day} period {period_index}") from None

    def index_of(self, day: str, period_index: int) -> int:
        return self.slot_at(day, period_index).index

    def has_slot(self, day: str, period_index: int) -> bool:
        return (day, period_index) in self._by_position

    def slots_for_day(self, day: str) -> tuple[TimeSlot, ...]:
        return tuple(slot for slot in self.slots if slot.day == day)

    def contiguous_pairs(self) -> tuple[tuple[TimeSlot, TimeSlot], ...]:
        """Double-length candidates in grid order, never crossing a day."""
        return self._contiguous_pairs

    def is_contiguous(self, first: TimeSlot, second: TimeSlot) -> bool:
        return (
            first.day == second.day
            and (first.period_index, second.period_index) in self.double_slot_pairs
        )
