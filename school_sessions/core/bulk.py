"""
Sequential bulk processing with per-item failure isolation.

Each item is handled on its own; a failure is rolled back, recorded in errors with the
item's key and processing moves on. Nothing is retried. Callers must inspect errors:
a successful response does not imply every item succeeded.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, Iterable, List, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from school_sessions.core.exceptions import ServiceError

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")
RecordT = TypeVar("RecordT")


@dataclass
class BulkResult(Generic[RecordT]):
    records: List[RecordT] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def succeeded_count(self) -> int:
        return len(self.records)


async def run_bulk(
    db: AsyncSession,
    items: Iterable[ItemT],
    handler: Callable[[ItemT], Awaitable[RecordT]],
    key_of: Callable[[ItemT], Any],
    details_of: Optional[Callable[[ItemT], Dict[str, Any]]] = None,
) -> BulkResult[RecordT]:
    """
    Run handler for each item in order. Handler is expected to commit its own work.
    details_of adds identifying fields (e.g. student_name) to an item's error entry.
    """
    result: BulkResult[RecordT] = BulkResult()
    for item in items:
        key = key_of(item)
        details = details_of(item) if details_of else {}
        try:
            record = await handler(item)
        except ServiceError as e:
            await db.rollback()
            result.errors.append({"student_id": key, **details, "error": e.message})
            continue
        except Exception as e:
            await db.rollback()
            logger.exception("Bulk item %s failed", key)
            result.errors.append({"student_id": key, **details, "error": str(e)})
            continue
        result.records.append(record)
    return result
