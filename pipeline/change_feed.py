"""
Change feed over the bronze change log with per-consumer checkpoints
"""

from typing import List, Tuple, Optional, Dict
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, update, exists, func, and_
from models.change_log import BronzeChangeLog
from models.checkpoint import ETLCheckpoint
from models.base import ChangeAction, CheckpointStatus
from schemas.employee import ChangeEvent
from core.exceptions import ChangeFeedError, CheckpointConflictError
import logging

logger = logging.getLogger(__name__)


class ChangeFeed:
    """
    Row-level deltas on the bronze table since a checkpoint.

    A checkpoint is the last change log sequence a consumer confirmed.
    Polling never moves it; ``advance`` does, as a compare-and-swap issued
    in the caller's transaction so the checkpoint commits together with the
    work it confirms.
    """

    def __init__(self, db_session: AsyncSession, feed_name: str = BronzeChangeLog.OBJECT_NAME):
        self.db = db_session
        self.feed_name = feed_name

    async def get_checkpoint(self, consumer_name: str) -> ETLCheckpoint:
        """Retrieve the consumer's checkpoint, creating it at 0 on first use"""
        checkpoint = await self._select_checkpoint(consumer_name)
        if checkpoint is not None:
            return checkpoint

        self.db.add(ETLCheckpoint(
            feed_name=self.feed_name,
            consumer_name=consumer_name,
            checkpoint_value=0,
            status=CheckpointStatus.PENDING
        ))
        try:
            await self.db.commit()
        except IntegrityError:
            # Another consumer created it first
            await self.db.rollback()

        checkpoint = await self._select_checkpoint(consumer_name)
        if checkpoint is None:
            raise ChangeFeedError(
                "Checkpoint could not be created",
                context={"feed": self.feed_name, "consumer": consumer_name}
            )
        logger.info(f"Created checkpoint for {consumer_name} on {self.feed_name}")
        return checkpoint

    async def _select_checkpoint(self, consumer_name: str) -> Optional[ETLCheckpoint]:
        result = await self.db.execute(
            select(ETLCheckpoint)
            .where(
                and_(
                    ETLCheckpoint.feed_name == self.feed_name,
                    ETLCheckpoint.consumer_name == consumer_name
                )
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def poll(
        self,
        checkpoint: int,
        max_changes: Optional[int] = None
    ) -> Tuple[List[ChangeEvent], int]:
        """
        Read the net change of every bronze row since ``checkpoint``.

        Args:
            checkpoint: Last confirmed change log sequence
            max_changes: Read at most this many log entries

        Returns:
            (events ordered by each row's last change, highest sequence read)
        """
        query = (
            select(BronzeChangeLog)
            .where(BronzeChangeLog.sequence > checkpoint)
            .order_by(BronzeChangeLog.sequence)
        )
        if max_changes is not None:
            query = query.limit(max_changes)

        entries = (await self.db.execute(query)).scalars().all()
        if not entries:
            return [], checkpoint

        first: Dict[int, BronzeChangeLog] = {}
        last: Dict[int, BronzeChangeLog] = {}
        for entry in entries:
            first.setdefault(entry.raw_record_id, entry)
            last[entry.raw_record_id] = entry

        events: List[ChangeEvent] = []
        for raw_record_id in sorted(last, key=lambda rid: last[rid].sequence):
            events.extend(self._net_change(first[raw_record_id], last[raw_record_id]))

        new_checkpoint = entries[-1].sequence
        logger.info(
            f"Polled {len(entries)} changes from {self.feed_name} "
            f"({checkpoint} -> {new_checkpoint}), {len(events)} net events"
        )
        return events, new_checkpoint

    @staticmethod
    def _net_change(first: BronzeChangeLog, last: BronzeChangeLog) -> List[ChangeEvent]:
        before = first.before_payload
        after = last.after_payload
        sequence = last.sequence
        raw_record_id = last.raw_record_id

        if before is None and after is None:
            return []
        if before == after:
            return []

        def event(action, payload_before, payload_after, key, is_update=False):
            return ChangeEvent(
                sequence=sequence,
                raw_record_id=raw_record_id,
                employee_number=key,
                action=action,
                is_update=is_update,
                before=payload_before,
                after=payload_after
            )

        if before is None:
            return [event(ChangeAction.INSERT, None, after, after.get("employee_number"))]
        if after is None:
            return [event(ChangeAction.DELETE, before, None, before.get("employee_number"))]

        old_key = before.get("employee_number")
        new_key = after.get("employee_number")
        if old_key != new_key:
            return [
                event(ChangeAction.DELETE, before, None, old_key),
                event(ChangeAction.INSERT, None, after, new_key),
            ]
        return [event(ChangeAction.UPDATE, before, after, new_key, is_update=True)]

    async def has_pending_changes(self, checkpoint: int) -> bool:
        """EXISTS check: is there any change log entry past ``checkpoint``"""
        result = await self.db.execute(
            select(exists().where(BronzeChangeLog.sequence > checkpoint))
        )
        return bool(result.scalar())

    async def latest_sequence(self) -> int:
        """Highest sequence in the change log (0 when empty)"""
        result = await self.db.execute(
            select(func.coalesce(func.max(BronzeChangeLog.sequence), 0))
        )
        return int(result.scalar())

    async def advance(
        self,
        consumer_name: str,
        expected: int,
        new_value: int,
        records_processed: int = 0
    ):
        """
        Compare-and-swap the checkpoint from ``expected`` to ``new_value``.

        Does not commit.

        Raises:
            CheckpointConflictError: another consumer moved the checkpoint
        """
        now = datetime.utcnow()
        result = await self.db.execute(
            update(ETLCheckpoint)
            .where(
                and_(
                    ETLCheckpoint.feed_name == self.feed_name,
                    ETLCheckpoint.consumer_name == consumer_name,
                    ETLCheckpoint.checkpoint_value == expected
                )
            )
            .values(
                checkpoint_value=new_value,
                status=CheckpointStatus.SUCCESS,
                last_run_at=now,
                last_success_at=now,
                total_runs=ETLCheckpoint.total_runs + 1,
                total_records_processed=ETLCheckpoint.total_records_processed + records_processed,
                last_records_processed=records_processed,
                error_message=None,
                updated_at=now
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            raise CheckpointConflictError(
                "Checkpoint moved by another consumer",
                context={
                    "feed": self.feed_name,
                    "consumer": consumer_name,
                    "expected": expected,
                    "new_value": new_value
                }
            )

        logger.info(f"Advanced checkpoint for {consumer_name}: {expected} -> {new_value}")

    async def record_failure(self, consumer_name: str, error_message: str):
        """Stamp the checkpoint FAILED without moving its value"""
        now = datetime.utcnow()
        await self.db.execute(
            update(ETLCheckpoint)
            .where(
                and_(
                    ETLCheckpoint.feed_name == self.feed_name,
                    ETLCheckpoint.consumer_name == consumer_name
                )
            )
            .values(
                status=CheckpointStatus.FAILED,
                last_run_at=now,
                last_failure_at=now,
                total_runs=ETLCheckpoint.total_runs + 1,
                error_message=error_message,
                updated_at=now
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
