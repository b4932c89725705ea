"""timetable_lite - weekly timetable recurrence resolution and caching engine.

Imports are kept light here; the engine and its store are loaded when a
command actually runs.
"""

__version__ = "0.1.0"

from typing import Optional


def run_week_report(args: Optional[object] = None) -> str:
    """Resolve one week of a schedule and return it as JSON.

    Args:
        args: Parsed command line namespace with db, schedule, week, weekend and debug

    Behavior:
    - Load .env defaults and TIMETABLE_* settings.
    - Apply command line overrides (database path, debug).
    - Configure logging, resolve the week without prefetching, close the engine.
    """
    import asyncio
    from datetime import date
    from pathlib import Path

    from .core.config_manager import ConfigManager
    from .engine import TimetableEngine
    from .lite_logging import configure_lite_logging

    settings = ConfigManager().load_settings()
    overrides: dict[str, object] = {"prefetch_enabled": False}
    db_path = getattr(args, "db", None)
    if db_path:
        overrides["database_path"] = Path(db_path)
    if getattr(args, "debug", False):
        overrides["debug"] = True
    settings = settings.model_copy(update=overrides)

    configure_lite_logging(debug_mode=settings.debug, log_level=settings.log_level)

    schedule_id = int(getattr(args, "schedule", 1))
    anchor = getattr(args, "week", None) or date.today()
    show_weekend = bool(getattr(args, "weekend", False))

    async def _resolve() -> str:
        engine = TimetableEngine.from_settings(settings)
        try:
            view = await engine.load_week(schedule_id, anchor, show_weekend=show_weekend)
        finally:
            await engine.close()
        return view.model_dump_json(indent=2)

    return asyncio.run(_resolve())
