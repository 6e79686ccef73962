"""
Tests for the SQLite gateway: scoping, range queries, conditional attach
and transactions.
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from focusblocks.time_truth.models import TaskStatus
from tests.fixtures import DAY, OWNER, at, make_block, make_task


class TestTasks:
    def test_roundtrip_preserves_fields(self, gateway):
        task = make_task(
            "t",
            priority_level="p2",
            duration_minutes=45,
            due_date=DAY,
            auto_schedule=False,
            description="write report",
        )
        task.scheduling_metadata.defer_count = 2
        gateway.insert_task(task)

        assert gateway.read_task("t", OWNER) == task

    def test_missing_duration_uses_default(self, gateway):
        gateway.insert_task(make_task("t"))
        with gateway.transaction():
            with gateway._get_conn() as conn:
                conn.execute("UPDATE tasks SET duration_minutes = NULL WHERE id = 't'")

        assert gateway.read_task("t", OWNER).duration_minutes == 30

    def test_missing_duration_estimated_from_name(self, gateway):
        gateway.insert_task(make_task("t", name="Research competitors"))
        with gateway.transaction():
            with gateway._get_conn() as conn:
                conn.execute("UPDATE tasks SET duration_minutes = NULL WHERE id = 't'")

        assert gateway.read_task("t", OWNER).duration_minutes == 120

    def test_reads_are_owner_scoped(self, gateway):
        gateway.insert_task(make_task("mine"))
        gateway.insert_task(make_task("theirs", owner_id="user_2"))

        assert [t.id for t in gateway.read_tasks_for_owner(OWNER)] == ["mine"]
        assert gateway.read_task("theirs", OWNER) is None

    def test_schedulable_only_filter(self, gateway):
        gateway.insert_task(make_task("ok"))
        gateway.insert_task(make_task("done", status=TaskStatus.DONE))
        gateway.insert_task(make_task("manual", auto_schedule=False))
        gateway.insert_task(make_task("placed", scheduled_block_id="block_1"))

        assert [t.id for t in gateway.read_tasks_for_owner(OWNER, schedulable_only=True)] == ["ok"]

    def test_insertion_order_and_limit(self, gateway):
        for i in range(5):
            gateway.insert_task(make_task(f"t{i}"))
        tasks = gateway.read_tasks_for_owner(OWNER, limit=3)
        assert [t.id for t in tasks] == ["t0", "t1", "t2"]

    def test_update_other_owner_is_noop(self, gateway):
        gateway.insert_task(make_task("t"))
        assert gateway.update_task(make_task("t", owner_id="user_2", name="hijacked")) is False
        assert gateway.read_task("t", OWNER).name == "Task t"


class TestAttachBlock:
    def test_attach_only_when_unscheduled(self, gateway):
        gateway.insert_task(make_task("t"))

        assert gateway.attach_block(make_task("t", scheduled_block_id="block_a")) is True
        assert gateway.attach_block(make_task("t", scheduled_block_id="block_b")) is False
        assert gateway.read_task("t", OWNER).scheduled_block_id == "block_a"


class TestBlocks:
    def test_create_assigns_fresh_id(self, gateway):
        saved = gateway.create_block(make_block("draft-t", at(9), at(10), task_id="t"))
        assert saved.id.startswith("block_")
        assert gateway.read_block("draft-t", OWNER) is None
        assert gateway.read_block(saved.id, OWNER).task_id == "t"

    def test_range_query_half_open(self, gateway):
        early = gateway.create_block(make_block("early", at(8), at(9)))
        inside = gateway.create_block(make_block("inside", at(10), at(11)))
        straddle = gateway.create_block(make_block("straddle", at(16), at(18)))
        gateway.create_block(make_block("tomorrow", at(9, days=1), at(10, days=1)))

        found = gateway.read_blocks_in_range(OWNER, at(9), at(17))
        assert [b.id for b in found] == [inside.id, straddle.id]
        assert early.id not in [b.id for b in found]

    def test_range_query_compares_instants_across_timezones(self, gateway):
        from zoneinfo import ZoneInfo

        chicago = ZoneInfo("America/Chicago")
        start = at(10).astimezone(chicago)
        block = replace(
            make_block("c", at(10), at(11)),
            start_time=start,
            end_time=start + timedelta(hours=1),
            timezone="America/Chicago",
        )
        saved = gateway.create_block(block)

        [found] = gateway.read_blocks_in_range(OWNER, at(10, 30), at(10, 45))
        assert found.id == saved.id
        assert found.timezone == "America/Chicago"
        assert found.start_time == at(10)

    def test_update_and_delete(self, gateway):
        saved = gateway.create_block(make_block("b", at(9), at(10)))
        moved = saved.moved_to(at(14), at(15))

        assert gateway.update_block(moved) is True
        assert gateway.read_block(saved.id, OWNER).start_time == at(14)
        assert gateway.delete_block(saved.id, "user_2") is False
        assert gateway.delete_block(saved.id, OWNER) is True
        assert gateway.delete_block(saved.id, OWNER) is False


class TestTransactions:
    def test_rollback_discards_all_writes(self, gateway):
        gateway.insert_task(make_task("t"))

        with pytest.raises(RuntimeError):
            with gateway.transaction():
                gateway.create_block(make_block("b", at(9), at(10)))
                gateway.update_task(make_task("t", name="renamed"))
                raise RuntimeError("boom")

        assert gateway.read_task("t", OWNER).name == "Task t"
        assert gateway.read_blocks_in_range(OWNER, at(0), at(0, days=1)) == []

    def test_nested_transaction_joins_outer(self, gateway):
        with pytest.raises(RuntimeError):
            with gateway.transaction():
                with gateway.transaction():
                    gateway.insert_task(make_task("inner"))
                raise RuntimeError("outer fails")

        assert gateway.read_task("inner", OWNER) is None

    def test_commit_persists(self, gateway):
        with gateway.transaction():
            gateway.insert_task(make_task("a"))
            gateway.insert_task(make_task("b"))
        assert len(gateway.read_tasks_for_owner(OWNER)) == 2


class TestEvents:
    def test_insert_and_filter(self, gateway):
        gateway.insert_event("task_deferred", "Deferred", {"task_id": "t", "day": DAY}, request_id="req-1")
        gateway.insert_event("task_completed", "Completed", {"task_id": "t"})

        [event] = gateway.read_events("task_deferred")
        assert event["request_id"] == "req-1"
        assert event["metadata"] == {"task_id": "t", "day": "2026-03-02"}
        assert len(gateway.read_events()) == 2
