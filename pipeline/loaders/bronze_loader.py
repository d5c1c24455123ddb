"""
Load raw employee records into bronze and capture every change
"""

from typing import Iterable, List, Dict, Any, Optional, Union
from datetime import datetime
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from models.raw_data import BronzeEmployee
from models.change_log import BronzeChangeLog
from models.base import ChangeAction
from schemas.employee import RawEmployeeRecord
from schemas.pipeline import BronzeLoadResult
from core.exceptions import BronzeLoadError
import logging

logger = logging.getLogger(__name__)

RecordLike = Union[RawEmployeeRecord, Dict[str, Any]]


class BronzeLoader:
    """
    Write raw records into the bronze table.

    Ensures:
    - A record whose employee_number already exists replaces that row
    - Records without an employee_number always append
    - Each insert, replace and delete appends one change log entry in the
      same transaction as the write it describes
    """

    def __init__(self, db_session: AsyncSession, key_batch_size: int = 500):
        self.db = db_session
        self.key_batch_size = key_batch_size

    async def load_records(
        self,
        records: Iterable[RecordLike],
        source_file: Optional[str] = None,
        commit: bool = True
    ) -> BronzeLoadResult:
        """
        Upsert records into bronze by employee_number.

        Args:
            records: Raw records (dicts or RawEmployeeRecord)
            source_file: Raw zone file the records came from, if any
            commit: Commit when done; False leaves the writes pending for the
                caller to commit with its own work

        Returns:
            Counts of inserted, updated and unchanged rows
        """
        validated = self._validate(records, source_file)
        result = BronzeLoadResult()
        if not validated:
            return result

        existing = await self._rows_by_key(
            {record.employee_number for record in validated if record.employee_number}
        )

        for record in validated:
            payload = record.dict()
            key = record.employee_number
            row = existing.get(key) if key else None

            if row is not None:
                before = row.to_payload()
                if before == payload:
                    result.unchanged += 1
                    continue
                for column, value in payload.items():
                    setattr(row, column, value)
                row.source_file = source_file
                row.ingested_at = datetime.utcnow()
                self._log_change(row.id, key, ChangeAction.UPDATE, before, payload)
                result.updated += 1
            else:
                row = BronzeEmployee(**payload, source_file=source_file)
                self.db.add(row)
                await self.db.flush()
                self._log_change(row.id, key, ChangeAction.INSERT, None, payload)
                if key:
                    existing[key] = row
                result.inserted += 1

        if commit:
            await self.db.commit()

        logger.info(
            f"Loaded {len(validated)} records into {BronzeEmployee.OBJECT_NAME} "
            f"(inserted={result.inserted}, updated={result.updated}, unchanged={result.unchanged})"
        )
        return result

    async def delete_records(self, employee_numbers: Iterable[str]) -> BronzeLoadResult:
        """Delete bronze rows by employee_number, capturing DELETE changes"""
        keys = {str(key) for key in employee_numbers if key is not None}
        rows = list((await self._rows_by_key(keys)).values())
        return await self._delete_rows(rows)

    async def truncate(self) -> BronzeLoadResult:
        """Delete every bronze row, capturing DELETE changes"""
        rows = (await self.db.execute(select(BronzeEmployee))).scalars().all()
        return await self._delete_rows(list(rows))

    async def _delete_rows(self, rows: List[BronzeEmployee]) -> BronzeLoadResult:
        for row in rows:
            self._log_change(row.id, row.employee_number, ChangeAction.DELETE, row.to_payload(), None)
            await self.db.delete(row)

        await self.db.commit()

        logger.info(f"Deleted {len(rows)} rows from {BronzeEmployee.OBJECT_NAME}")
        return BronzeLoadResult(deleted=len(rows))

    def _log_change(
        self,
        raw_record_id: int,
        employee_number: Optional[str],
        action: ChangeAction,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]]
    ):
        self.db.add(BronzeChangeLog(
            raw_record_id=raw_record_id,
            employee_number=employee_number,
            action=action,
            before_payload=before,
            after_payload=after,
            changed_at=datetime.utcnow()
        ))

    async def _rows_by_key(self, keys: set) -> Dict[str, BronzeEmployee]:
        rows: Dict[str, BronzeEmployee] = {}
        ordered = sorted(keys)
        for i in range(0, len(ordered), self.key_batch_size):
            batch = ordered[i:i + self.key_batch_size]
            result = await self.db.execute(
                select(BronzeEmployee)
                .where(BronzeEmployee.employee_number.in_(batch))
                .order_by(BronzeEmployee.id)
            )
            for row in result.scalars():
                rows.setdefault(row.employee_number, row)
        return rows

    @staticmethod
    def _validate(records: Iterable[RecordLike], source_file: Optional[str]) -> List[RawEmployeeRecord]:
        validated = []
        for index, record in enumerate(records):
            if isinstance(record, RawEmployeeRecord):
                validated.append(record)
                continue
            try:
                validated.append(RawEmployeeRecord(**record))
            except (ValidationError, TypeError) as e:
                raise BronzeLoadError(
                    "Invalid raw employee record",
                    context={"record_index": index, "source_file": source_file},
                    original_exception=e
                )
        return validated
