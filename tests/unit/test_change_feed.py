"""
Unit tests for the bronze change feed and its checkpoints
"""

import pytest
from pipeline.change_feed import ChangeFeed
from pipeline.loaders.bronze_loader import BronzeLoader
from models.change_log import BronzeChangeLog
from models.base import ChangeAction, CheckpointStatus
from core.exceptions import CheckpointConflictError


def _payload(employee_number, department="Finance"):
    return {"employee_number": employee_number, "department": department}


class TestPolling:
    """Test net change computation between checkpoints"""

    @pytest.mark.asyncio
    async def test_inserts_since_zero(self, db_session, employee_records):
        """Test every loaded row shows up once as an INSERT"""
        await BronzeLoader(db_session).load_records(employee_records)
        feed = ChangeFeed(db_session)

        events, new_checkpoint = await feed.poll(0)

        assert [e.action for e in events] == [ChangeAction.INSERT] * 4
        assert [e.employee_number for e in events] == ["1001", "1002", "1003", "1004"]
        assert new_checkpoint == await feed.latest_sequence()
        assert all(e.before is None for e in events)

    @pytest.mark.asyncio
    async def test_empty_feed_keeps_checkpoint(self, db_session):
        """Test polling an empty range returns no events and the same checkpoint"""
        events, new_checkpoint = await ChangeFeed(db_session).poll(7)

        assert events == []
        assert new_checkpoint == 7

    @pytest.mark.asyncio
    async def test_insert_then_delete_nets_to_nothing(self, db_session, employee_records):
        """Test a row created and removed inside one window is invisible"""
        loader = BronzeLoader(db_session)
        await loader.load_records(employee_records[:1])
        await loader.delete_records(["1001"])

        events, new_checkpoint = await ChangeFeed(db_session).poll(0)

        assert events == []
        assert new_checkpoint == 2

    @pytest.mark.asyncio
    async def test_insert_then_update_is_single_insert(self, db_session, employee_records):
        """Test the net change carries the latest payload"""
        loader = BronzeLoader(db_session)
        await loader.load_records(employee_records[:1])
        await loader.load_records([dict(employee_records[0], department="Sales")])

        events, _ = await ChangeFeed(db_session).poll(0)

        assert len(events) == 1
        assert events[0].action == ChangeAction.INSERT
        assert events[0].after["department"] == "Sales"

    @pytest.mark.asyncio
    async def test_update_after_checkpoint(self, db_session, employee_records):
        """Test a change to a row seen before is an UPDATE with both images"""
        loader = BronzeLoader(db_session)
        feed = ChangeFeed(db_session)
        await loader.load_records(employee_records[:1])
        _, checkpoint = await feed.poll(0)

        await loader.load_records([dict(employee_records[0], department="Sales")])
        events, _ = await feed.poll(checkpoint)

        assert len(events) == 1
        assert events[0].action == ChangeAction.UPDATE
        assert events[0].is_update is True
        assert events[0].before["department"] == "Finance"
        assert events[0].after["department"] == "Sales"

    @pytest.mark.asyncio
    async def test_update_reverted_in_window_is_invisible(self, db_session, employee_records):
        """Test identical before and after images produce no event"""
        loader = BronzeLoader(db_session)
        feed = ChangeFeed(db_session)
        await loader.load_records(employee_records[:1])
        _, checkpoint = await feed.poll(0)

        await loader.load_records([dict(employee_records[0], department="Sales")])
        await loader.load_records(employee_records[:1])
        events, new_checkpoint = await feed.poll(checkpoint)

        assert events == []
        assert new_checkpoint == checkpoint + 2

    @pytest.mark.asyncio
    async def test_key_change_is_delete_then_insert(self, db_session):
        """Test a row whose employee_number changed retracts the old key"""
        db_session.add_all([
            BronzeChangeLog(raw_record_id=1, employee_number="A", action=ChangeAction.INSERT,
                            before_payload=None, after_payload=_payload("A")),
        ])
        await db_session.commit()
        feed = ChangeFeed(db_session)
        _, checkpoint = await feed.poll(0)

        db_session.add(BronzeChangeLog(
            raw_record_id=1, employee_number="B", action=ChangeAction.UPDATE,
            before_payload=_payload("A"), after_payload=_payload("B")
        ))
        await db_session.commit()
        events, _ = await feed.poll(checkpoint)

        assert [(e.action, e.employee_number) for e in events] == [
            (ChangeAction.DELETE, "A"),
            (ChangeAction.INSERT, "B"),
        ]

    @pytest.mark.asyncio
    async def test_events_ordered_by_last_change(self, db_session):
        """Test a row touched again later sorts after rows changed in between"""
        db_session.add_all([
            BronzeChangeLog(raw_record_id=1, employee_number="A", action=ChangeAction.INSERT,
                            after_payload=_payload("A")),
            BronzeChangeLog(raw_record_id=2, employee_number="B", action=ChangeAction.INSERT,
                            after_payload=_payload("B")),
            BronzeChangeLog(raw_record_id=1, employee_number="A", action=ChangeAction.UPDATE,
                            before_payload=_payload("A"), after_payload=_payload("A", "Sales")),
        ])
        await db_session.commit()

        events, _ = await ChangeFeed(db_session).poll(0)

        assert [e.employee_number for e in events] == ["B", "A"]
        assert events[1].after["department"] == "Sales"

    @pytest.mark.asyncio
    async def test_max_changes_limits_window(self, db_session, employee_records):
        """Test polling stops after max_changes log entries"""
        await BronzeLoader(db_session).load_records(employee_records)
        feed = ChangeFeed(db_session)

        events, checkpoint = await feed.poll(0, max_changes=3)
        rest, final = await feed.poll(checkpoint, max_changes=3)

        assert [e.employee_number for e in events] == ["1001", "1002", "1003"]
        assert [e.employee_number for e in rest] == ["1004"]
        assert final == await feed.latest_sequence()

    @pytest.mark.asyncio
    async def test_polling_does_not_move_checkpoint(self, db_session, employee_records):
        """Test a poll without advance re-delivers the same changes"""
        await BronzeLoader(db_session).load_records(employee_records)
        feed = ChangeFeed(db_session)
        checkpoint = await feed.get_checkpoint("silver")

        first, _ = await feed.poll(checkpoint.checkpoint_value)
        again, _ = await feed.poll((await feed.get_checkpoint("silver")).checkpoint_value)

        assert [e.sequence for e in first] == [e.sequence for e in again]


class TestPendingChanges:
    """Test the has-data check"""

    @pytest.mark.asyncio
    async def test_has_pending_changes(self, db_session, employee_records):
        feed = ChangeFeed(db_session)
        assert await feed.has_pending_changes(0) is False
        assert await feed.latest_sequence() == 0

        await BronzeLoader(db_session).load_records(employee_records)
        latest = await feed.latest_sequence()

        assert await feed.has_pending_changes(0) is True
        assert await feed.has_pending_changes(latest) is False


class TestCheckpoints:
    """Test checkpoint creation and compare-and-swap advance"""

    @pytest.mark.asyncio
    async def test_checkpoint_created_at_zero(self, db_session):
        feed = ChangeFeed(db_session)

        checkpoint = await feed.get_checkpoint("silver")

        assert checkpoint.checkpoint_value == 0
        assert checkpoint.status == CheckpointStatus.PENDING
        assert checkpoint.feed_name == BronzeChangeLog.OBJECT_NAME
        assert (await feed.get_checkpoint("silver")).id == checkpoint.id

    @pytest.mark.asyncio
    async def test_advance_moves_checkpoint(self, db_session):
        """Test a successful advance records the new value and statistics"""
        feed = ChangeFeed(db_session)
        await feed.get_checkpoint("silver")

        await feed.advance("silver", expected=0, new_value=5, records_processed=4)
        await db_session.commit()
        checkpoint = await feed.get_checkpoint("silver")

        assert checkpoint.checkpoint_value == 5
        assert checkpoint.status == CheckpointStatus.SUCCESS
        assert checkpoint.total_runs == 1
        assert checkpoint.total_records_processed == 4
        assert checkpoint.last_success_at is not None

    @pytest.mark.asyncio
    async def test_stale_advance_conflicts(self, db_session):
        """Test the second consumer over the same changeset loses"""
        feed = ChangeFeed(db_session)
        await feed.get_checkpoint("silver")
        await feed.advance("silver", expected=0, new_value=5)
        await db_session.commit()

        with pytest.raises(CheckpointConflictError):
            await feed.advance("silver", expected=0, new_value=6)
        await db_session.rollback()

        assert (await feed.get_checkpoint("silver")).checkpoint_value == 5

    @pytest.mark.asyncio
    async def test_consumers_are_independent(self, db_session):
        feed = ChangeFeed(db_session)
        await feed.get_checkpoint("silver")
        await feed.get_checkpoint("audit")

        await feed.advance("silver", expected=0, new_value=3)
        await db_session.commit()

        assert (await feed.get_checkpoint("audit")).checkpoint_value == 0

    @pytest.mark.asyncio
    async def test_record_failure_keeps_value(self, db_session):
        """Test a failure is stamped on the checkpoint without moving it"""
        feed = ChangeFeed(db_session)
        await feed.get_checkpoint("silver")
        await feed.advance("silver", expected=0, new_value=2)
        await db_session.commit()

        await feed.record_failure("silver", "boom")
        checkpoint = await feed.get_checkpoint("silver")

        assert checkpoint.status == CheckpointStatus.FAILED
        assert checkpoint.checkpoint_value == 2
        assert checkpoint.error_message == "boom"
        assert checkpoint.last_failure_at is not None
