"""Timetable engine facade wiring store, resolver, cache, mutations and holidays."""

import asyncio
import logging
import time
from datetime import date
from typing import Any, Callable, Optional

from .academy_resolver import AcademyResolver
from .core.config_manager import TimetableSettings
from .holiday_overlay import HolidayOverlay, HolidayProvider
from .lite_event_resolver import LiteEventResolver
from .lite_models import (
    MutationCommand,
    MutationOutcome,
    OccurrenceState,
    ResolvedWindow,
    WeekView,
    WindowKey,
)
from .lite_store import ScheduleStore, SQLiteScheduleStore
from .lite_windows import week_window
from .mutation_coordinator import MutationCoordinator
from .window_cache import CacheListener, WindowCache

logger = logging.getLogger(__name__)


class TimetableEngine:
    """Entry point for reading and changing one user's timetable.

    One engine (and therefore one window cache) is created per active
    schedule session.
    """

    def __init__(
        self,
        store: ScheduleStore,
        settings: Optional[TimetableSettings] = None,
        holiday_provider: Optional[HolidayProvider] = None,
        academy_resolver: Optional[AcademyResolver] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or TimetableSettings()
        self.store = store
        self.resolver = LiteEventResolver(store)
        self.cache = WindowCache(
            self.resolver,
            ttl_seconds=self.settings.cache_ttl_seconds,
            clock=clock,
            max_entries=self.settings.cache_max_entries,
        )
        self.coordinator = MutationCoordinator(store, self.cache, academy_resolver)
        self.holidays = HolidayOverlay(
            holiday_provider, timeout_seconds=self.settings.holiday_timeout_seconds
        )

    @classmethod
    def from_settings(
        cls, settings: TimetableSettings, holiday_provider: Optional[HolidayProvider] = None
    ) -> "TimetableEngine":
        """Create an engine backed by the SQLite store named in settings."""
        return cls(
            SQLiteScheduleStore(settings.database_path),
            settings=settings,
            holiday_provider=holiday_provider,
        )

    async def resolve_window(self, schedule_id: int, start: date, end: date) -> ResolvedWindow:
        """Get the resolved window, prefetching its neighbours after a cache miss."""
        key = WindowKey(schedule_id, start, end)
        was_cached = self.cache.peek(key) is not None
        window = await self.cache.get(key)
        if not was_cached and self.settings.prefetch_enabled:
            self.cache.prefetch(key)
        return window

    async def load_week(self, schedule_id: int, anchor: date, show_weekend: bool = False) -> WeekView:
        """Resolve the week containing anchor together with its holidays."""
        start, end = week_window(anchor, show_weekend)
        window, (holidays, holidays_available) = await asyncio.gather(
            self.resolve_window(schedule_id, start, end),
            self.holidays.holidays_for(start, end),
        )
        return WeekView(
            window=window,
            holidays=holidays,
            holidays_available=holidays_available,
            show_weekend=show_weekend,
        )

    async def mutate(self, command: MutationCommand) -> MutationOutcome:
        return await self.coordinator.mutate(command)

    async def occurrence_state(self, event_id: int, on_date: date) -> OccurrenceState:
        return await self.coordinator.occurrence_state(event_id, on_date)

    def subscribe(self, listener: CacheListener) -> Callable[[], None]:
        return self.cache.subscribe(listener)

    def is_refreshing(self, schedule_id: int, start: date, end: date) -> bool:
        return self.cache.is_refreshing(WindowKey(schedule_id, start, end))

    def get_stats(self) -> dict[str, Any]:
        return {
            "cache": self.cache.get_stats(),
            "holidays": self.holidays.orchestrator.get_health_stats(),
        }

    async def close(self) -> None:
        """Cancel background cache work."""
        await self.cache.shutdown()
        logger.debug("Timetable engine closed")
