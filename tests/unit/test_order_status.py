from __future__ import annotations

import asyncio
from typing import Optional

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from storefront.models import Order, OrderStatus
from storefront.services.order_status import (
    OrderStatusGuard,
    OrderStatusStore,
    SqlOrderStatusStore,
    TransitionOutcome,
    required_status_for,
)


class MemoryOrderStore(OrderStatusStore):
    def __init__(self, orders: dict[int, OrderStatus]):
        self.orders = dict(orders)
        self.writes: list[tuple[int, OrderStatus]] = []

    async def get_status(self, order_id: int) -> Optional[OrderStatus]:
        return self.orders.get(order_id)

    async def compare_and_set_status(self, order_id, expected, new) -> bool:
        if self.orders.get(order_id) != expected:
            return False
        self.orders[order_id] = new
        self.writes.append((order_id, new))
        return True


class InterleavingOrderStore(MemoryOrderStore):
    """Holds every reader until ``readers`` of them have seen the same status."""

    def __init__(self, orders, readers: int):
        super().__init__(orders)
        self._readers = readers
        self._seen = 0
        self._all_read = asyncio.Event()

    async def get_status(self, order_id):
        status = await super().get_status(order_id)
        self._seen += 1
        if self._seen >= self._readers:
            self._all_read.set()
        await self._all_read.wait()
        return status


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.calls: list[tuple[int, OrderStatus]] = []
        self.fail = fail

    async def __call__(self, order_id: int, status: OrderStatus) -> bool:
        self.calls.append((order_id, status))
        if self.fail:
            raise RuntimeError("LINE is down")
        return True


def test_required_status_table():
    assert required_status_for("ready") == OrderStatus.APPROVED
    assert required_status_for(OrderStatus.PICKED_UP) == OrderStatus.READY
    assert required_status_for("approved") is None
    assert required_status_for("cooking") is None


def test_ready_then_picked_up_happy_path():
    async def scenario():
        store = MemoryOrderStore({1: OrderStatus.APPROVED})
        notifier = RecordingNotifier()
        guard = OrderStatusGuard(store, notifier=notifier)

        first = await guard.apply_transition(1, "ready")
        assert first.outcome == TransitionOutcome.APPLIED
        assert first.success is True
        assert first.notified is True

        second = await guard.apply_transition(1, OrderStatus.PICKED_UP)
        assert second.outcome == TransitionOutcome.APPLIED
        assert store.orders[1] == OrderStatus.PICKED_UP
        assert notifier.calls == [(1, OrderStatus.READY), (1, OrderStatus.PICKED_UP)]

    asyncio.run(scenario())


def test_concurrent_identical_transitions_apply_exactly_once():
    async def scenario():
        store = InterleavingOrderStore({7: OrderStatus.APPROVED}, readers=2)
        notifier = RecordingNotifier()
        guard = OrderStatusGuard(store, notifier=notifier)

        results = await asyncio.gather(
            guard.apply_transition(7, "ready"),
            guard.apply_transition(7, "ready"),
        )

        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == ["applied", "conflict"]
        assert store.writes == [(7, OrderStatus.READY)]
        assert notifier.calls == [(7, OrderStatus.READY)]

    asyncio.run(scenario())


@pytest.mark.parametrize(
    "current, requested",
    [
        (OrderStatus.PENDING, "ready"),
        (OrderStatus.READY, "ready"),
        (OrderStatus.APPROVED, "picked_up"),
        (OrderStatus.PICKED_UP, "picked_up"),
        (OrderStatus.REJECTED, "ready"),
    ],
)
def test_out_of_order_transitions_are_rejected(current, requested):
    store = MemoryOrderStore({3: current})
    result = asyncio.run(OrderStatusGuard(store).apply_transition(3, requested))

    assert result.outcome == TransitionOutcome.INVALID_TRANSITION
    assert result.current_status == current
    assert store.orders[3] == current
    assert store.writes == []
    assert result.message.startswith(f"Invalid transition: {current.value} -> {requested}")


def test_unknown_target_status_is_rejected_before_lookup():
    store = MemoryOrderStore({})
    result = asyncio.run(OrderStatusGuard(store).apply_transition(3, "approved"))
    assert result.outcome == TransitionOutcome.INVALID_STATUS
    assert result.message == "Invalid status: approved"


def test_missing_order_is_not_found():
    result = asyncio.run(OrderStatusGuard(MemoryOrderStore({})).apply_transition(99, "ready"))
    assert result.outcome == TransitionOutcome.NOT_FOUND
    assert result.success is False


def test_notifier_failure_does_not_undo_the_update():
    async def scenario():
        store = MemoryOrderStore({1: OrderStatus.APPROVED})
        notifier = RecordingNotifier(fail=True)
        result = await OrderStatusGuard(store, notifier=notifier).apply_transition(1, "ready")

        assert result.outcome == TransitionOutcome.APPLIED
        assert result.notified is False
        assert store.orders[1] == OrderStatus.READY

    asyncio.run(scenario())


def test_storage_errors_propagate():
    class BrokenStore(MemoryOrderStore):
        async def get_status(self, order_id):
            raise OperationalError("SELECT", {}, ConnectionError("gone"))

    with pytest.raises(OperationalError):
        asyncio.run(OrderStatusGuard(BrokenStore({})).apply_transition(1, "ready"))


# ---------------------------------------------------------------------------
# SQL store
# ---------------------------------------------------------------------------

async def _add_order(session_maker, status: OrderStatus) -> int:
    async with session_maker() as db:
        order = Order(
            order_number="TZ-0001",
            customer_name="Somchai",
            customer_phone="0812345678",
            total_amount=180,
            status=status,
        )
        db.add(order)
        await db.commit()
        return order.id


def test_sql_compare_and_set_only_one_writer_wins(session_maker):
    async def scenario():
        order_id = await _add_order(session_maker, OrderStatus.APPROVED)

        async with session_maker() as db_a, session_maker() as db_b:
            store_a = SqlOrderStatusStore(db_a)
            store_b = SqlOrderStatusStore(db_b)

            assert await store_a.get_status(order_id) == OrderStatus.APPROVED
            assert await store_b.get_status(order_id) == OrderStatus.APPROVED
            await db_b.rollback()  # release the read before A writes

            assert await store_a.compare_and_set_status(order_id, OrderStatus.APPROVED, OrderStatus.READY) is True
            assert await store_b.compare_and_set_status(order_id, OrderStatus.APPROVED, OrderStatus.READY) is False

        async with session_maker() as db:
            stored = await db.scalar(select(Order.status).where(Order.id == order_id))
            assert stored == OrderStatus.READY

    asyncio.run(scenario())


def test_sql_guard_end_to_end(session_maker):
    async def scenario():
        order_id = await _add_order(session_maker, OrderStatus.APPROVED)

        async with session_maker() as db:
            guard = OrderStatusGuard(SqlOrderStatusStore(db))
            assert (await guard.apply_transition(order_id, "picked_up")).outcome == TransitionOutcome.INVALID_TRANSITION
            assert (await guard.apply_transition(order_id, "ready")).outcome == TransitionOutcome.APPLIED
            assert (await guard.apply_transition(order_id, "ready")).outcome == TransitionOutcome.INVALID_TRANSITION
            assert (await guard.apply_transition(order_id, "picked_up")).outcome == TransitionOutcome.APPLIED
            assert (await guard.apply_transition(order_id + 1, "ready")).outcome == TransitionOutcome.NOT_FOUND

    asyncio.run(scenario())


class BarrierSqlOrderStore(SqlOrderStatusStore):
    """SQL store whose readers wait until every device has read the order."""

    def __init__(self, session, barrier: dict):
        super().__init__(session)
        self._barrier = barrier

    async def get_status(self, order_id):
        status = await super().get_status(order_id)
        self._barrier["seen"] += 1
        if self._barrier["seen"] >= self._barrier["readers"]:
            self._barrier["event"].set()
        await self._barrier["event"].wait()
        return status


def test_sql_concurrent_pickup_applies_exactly_once(session_maker):
    async def scenario():
        order_id = await _add_order(session_maker, OrderStatus.READY)
        barrier = {"seen": 0, "readers": 2, "event": asyncio.Event()}

        async with session_maker() as db_a, session_maker() as db_b:
            guard_a = OrderStatusGuard(BarrierSqlOrderStore(db_a, barrier))
            guard_b = OrderStatusGuard(BarrierSqlOrderStore(db_b, barrier))
            results = await asyncio.gather(
                guard_a.apply_transition(order_id, "picked_up"),
                guard_b.apply_transition(order_id, "picked_up"),
            )

        assert sorted(r.outcome.value for r in results) == ["applied", "conflict"]

        async with session_maker() as db:
            stored = await db.scalar(select(Order.status).where(Order.id == order_id))
            assert stored == OrderStatus.PICKED_UP

    asyncio.run(scenario())
