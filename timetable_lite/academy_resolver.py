"""Academy lookup-or-create used by timetable mutations."""

import logging
from typing import Protocol

from .lite_models import AcademySubject
from .lite_store import StoreTransaction
from .timetable_exceptions import TimetableValidationError

logger = logging.getLogger(__name__)


class AcademyResolver(Protocol):
    """Resolves an academy name to an id inside the caller's transaction."""

    async def resolve_or_create_academy(
        self, name: str, subject: AcademySubject, schedule_id: int, tx: StoreTransaction
    ) -> int: ...


class StoreAcademyResolver:
    """Reuses a live academy with the same name and subject, else creates one.

    Runs on the mutation's own transaction, so a failed mutation never leaves
    an orphan academy behind.
    """

    async def resolve_or_create_academy(
        self, name: str, subject: AcademySubject, schedule_id: int, tx: StoreTransaction
    ) -> int:
        cleaned = name.strip()
        if not cleaned:
            raise TimetableValidationError("academy name must not be blank")
        academy_id = await tx.find_or_create_academy(cleaned, subject, schedule_id)
        logger.debug("Resolved academy %r (%s) to id %s", cleaned, subject.value, academy_id)
        return academy_id
