"""
Apply change feed events to a silver staging table (MERGE by employee_number)
"""

from typing import Iterable, List, Dict, Any, Optional, Type
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from models.staging import StagedEmployee, StagedEmployeeColumns
from models.change_log import BronzeChangeLog
from models.base import ChangeAction
from pipeline.transformers.survey_parser import EmployeeRecordParser
from schemas.employee import ChangeEvent
from schemas.pipeline import MergeResult
from core.exceptions import MergeError
import logging

logger = logging.getLogger(__name__)


class UpsertMerger:
    """
    Merge a changeset into a staging table keyed by employee_number.

    Ensures:
    - Key existence decides insert vs update, so a replayed or ambiguous
      INSERT never produces a duplicate key
    - DELETE of an absent key is a no-op
    - Events are applied in order, one flush per event
    - Nothing is committed here; the caller commits together with the
      checkpoint advance
    """

    def __init__(
        self,
        db_session: AsyncSession,
        parser: Optional[EmployeeRecordParser] = None,
        model: Type[StagedEmployeeColumns] = StagedEmployee,
        source_object: str = BronzeChangeLog.OBJECT_NAME
    ):
        self.db = db_session
        self.parser = parser or EmployeeRecordParser()
        self.model = model
        self.source_object = source_object

    async def apply(
        self,
        changeset: Iterable[ChangeEvent],
        etl_run_id: Optional[str],
        staged_at: Optional[datetime] = None
    ) -> MergeResult:
        """
        Apply events in order.

        Args:
            changeset: Events from the change feed
            etl_run_id: Correlation id stamped on every written row
            staged_at: Timestamp to stamp (defaults to now)

        Returns:
            MergeResult with inserted, updated, deleted and skipped counts
        """
        result = MergeResult()
        stamp = staged_at or datetime.utcnow()

        for event in changeset:
            try:
                await self._apply_event(event, etl_run_id, stamp, result)
            except SQLAlchemyError as e:
                raise MergeError(
                    "Failed to apply change event",
                    context={
                        "employee_number": event.employee_number,
                        "action": event.action.value,
                        "sequence": event.sequence,
                        "target": self.model.OBJECT_NAME
                    },
                    original_exception=e
                )

        logger.info(
            f"Merged into {self.model.OBJECT_NAME}: inserted={result.inserted}, "
            f"updated={result.updated}, deleted={result.deleted}, skipped={result.skipped}"
        )
        return result

    async def _apply_event(
        self,
        event: ChangeEvent,
        etl_run_id: Optional[str],
        staged_at: datetime,
        result: MergeResult
    ):
        if event.action == ChangeAction.DELETE:
            key = event.employee_number
            if key is None:
                result.skipped += 1
                return
            row = await self.db.get(self.model, key)
            if row is not None:
                await self.db.delete(row)
                await self.db.flush()
                result.deleted += 1
            return

        candidate = self.parser.parse(event.after or {})
        if candidate.employee_number is None:
            logger.warning(f"Skipping change {event.sequence}: employee_number is NULL")
            result.skipped += 1
            return

        if await self._upsert(candidate.dict(), etl_run_id, staged_at):
            result.inserted += 1
        else:
            result.updated += 1
        await self.db.flush()

    async def _upsert(self, values: Dict[str, Any], etl_run_id: Optional[str], staged_at: datetime) -> bool:
        """Overwrite or insert one row; True when a row was inserted"""
        values = dict(values, staged_at=staged_at, source_object=self.source_object, etl_run_id=etl_run_id)
        row = await self.db.get(self.model, values["employee_number"])
        if row is None:
            self.db.add(self.model(**values))
            return True
        for column, value in values.items():
            setattr(row, column, value)
        return False

    async def full_refresh(
        self,
        payloads: Iterable[Dict[str, Any]],
        etl_run_id: Optional[str],
        staged_at: Optional[datetime] = None
    ) -> MergeResult:
        """
        Replace the whole staging table with the given raw payloads.

        Rows with a NULL key are skipped; a later payload for the same key
        wins. Does not commit.
        """
        result = MergeResult()
        stamp = staged_at or datetime.utcnow()

        existing = (await self.db.execute(select(self.model))).scalars().all()
        for row in existing:
            await self.db.delete(row)
        await self.db.flush()
        result.deleted = len(existing)

        candidates: Dict[str, Dict[str, Any]] = {}
        for payload in payloads:
            candidate = self.parser.parse(payload)
            if candidate.employee_number is None:
                result.skipped += 1
                continue
            candidates[candidate.employee_number] = candidate.dict()

        rows: List[StagedEmployeeColumns] = [
            self.model(**values, staged_at=stamp, source_object=self.source_object, etl_run_id=etl_run_id)
            for values in candidates.values()
        ]
        self.db.add_all(rows)
        await self.db.flush()
        result.inserted = len(rows)

        logger.info(
            f"Full refresh of {self.model.OBJECT_NAME}: {len(rows)} rows "
            f"({result.skipped} skipped without key)"
        )
        return result
