"""Bounded-wait holiday lookup for timetable weeks."""

import logging
from datetime import date
from typing import Optional, Protocol

from .core.async_utils import AsyncOrchestrator, AsyncTimeoutError
from .lite_models import Holiday

logger = logging.getLogger(__name__)

DEFAULT_HOLIDAY_TIMEOUT_SECONDS = 3.0


class HolidayProvider(Protocol):
    """External source of public holidays. May be slow or fail."""

    async def get_holidays(self, start: date, end: date) -> dict[date, Holiday]: ...


class HolidayOverlay:
    """Looks up holidays for a window without ever blocking resolution.

    Timeouts and provider errors degrade to an empty holiday map; the second
    element of the returned tuple tells callers whether holidays are known.
    """

    def __init__(
        self,
        provider: Optional[HolidayProvider] = None,
        timeout_seconds: float = DEFAULT_HOLIDAY_TIMEOUT_SECONDS,
        orchestrator: Optional[AsyncOrchestrator] = None,
    ):
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self.orchestrator = orchestrator or AsyncOrchestrator(default_timeout=timeout_seconds)

    async def holidays_for(self, start: date, end: date) -> tuple[dict[date, Holiday], bool]:
        """Get holidays inside [start, end].

        Returns:
            (holidays by date, available flag)
        """
        if self.provider is None:
            return {}, True

        try:
            holidays = await self.orchestrator.run_with_timeout(
                self.provider.get_holidays(start, end),
                timeout=self.timeout_seconds,
            )
        except AsyncTimeoutError:
            logger.warning("Holiday lookup for %s..%s timed out, showing none", start, end)
            return {}, False
        except Exception:
            # Provider is external; any failure means "no holidays shown"
            logger.warning("Holiday lookup for %s..%s failed", start, end, exc_info=True)
            return {}, False

        in_window = {day: holiday for day, holiday in (holidays or {}).items() if start <= day <= end}
        return in_window, True
