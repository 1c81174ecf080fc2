"""
Order Status Guard

Moves orders along the staff-controlled part of the workflow:

    approved -> ready -> picked_up

Each transition is applied with a compare-and-swap update
(``WHERE id = ? AND status = <status just read>``), so when two staff
devices press the same button at once exactly one update lands and the
other is reported as a conflict. The customer notification that follows
a successful change is best-effort and never undoes it.

Author: Khalil Bannouri
Version: 3.0.0
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models import Order, OrderStatus

logger = logging.getLogger(__name__)

# Target status -> status the order must currently have
STATUS_TRANSITIONS: dict[OrderStatus, OrderStatus] = {
    OrderStatus.READY: OrderStatus.APPROVED,
    OrderStatus.PICKED_UP: OrderStatus.READY,
}

# Returns whether a message actually went out
Notifier = Callable[[int, OrderStatus], Awaitable[bool]]


class TransitionOutcome(str, Enum):
    """How a transition request ended."""
    APPLIED = "applied"
    CONFLICT = "conflict"
    INVALID_STATUS = "invalid_status"
    INVALID_TRANSITION = "invalid_transition"
    NOT_FOUND = "not_found"


@dataclass
class TransitionResult:
    """
    Standardized result of a status transition request.

    Attributes:
        outcome: What happened
        order_id: Target order
        requested_status: Status the caller asked for (raw value)
        current_status: Status read before the update, if the order exists
        expected_status: Status the order needed for the transition
        notified: Whether the follow-up notification went out
    """
    outcome: TransitionOutcome
    order_id: int
    requested_status: str
    current_status: Optional[OrderStatus] = None
    expected_status: Optional[OrderStatus] = None
    notified: bool = False

    @property
    def success(self) -> bool:
        return self.outcome == TransitionOutcome.APPLIED

    @property
    def message(self) -> str:
        if self.outcome == TransitionOutcome.APPLIED:
            return f"Order #{self.order_id} is now {self.requested_status}"
        if self.outcome == TransitionOutcome.INVALID_STATUS:
            return f"Invalid status: {self.requested_status}"
        if self.outcome == TransitionOutcome.NOT_FOUND:
            return f"Order #{self.order_id} not found"
        if self.outcome == TransitionOutcome.INVALID_TRANSITION:
            return (
                f"Invalid transition: {self.current_status.value} -> {self.requested_status} "
                f"(expected {self.expected_status.value})"
            )
        return "Order status conflict"


class OrderStatusStore(ABC):
    """Persistence needed by the guard."""

    @abstractmethod
    async def get_status(self, order_id: int) -> Optional[OrderStatus]:
        """Current status, or None if the order does not exist."""
        pass

    @abstractmethod
    async def compare_and_set_status(
        self,
        order_id: int,
        expected: OrderStatus,
        new: OrderStatus,
    ) -> bool:
        """Set ``new`` only if the stored status is still ``expected``."""
        pass


class SqlOrderStatusStore(OrderStatusStore):
    """``orders`` table backed store."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_status(self, order_id: int) -> Optional[OrderStatus]:
        result = await self._session.execute(
            select(Order.status).where(Order.id == order_id)
        )
        return result.scalar_one_or_none()

    async def compare_and_set_status(
        self,
        order_id: int,
        expected: OrderStatus,
        new: OrderStatus,
    ) -> bool:
        result = await self._session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == expected)
            .values(status=new)
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()
        return result.rowcount == 1


def required_status_for(target: Union[str, OrderStatus]) -> Optional[OrderStatus]:
    """Status an order must have before moving to ``target``."""
    try:
        return STATUS_TRANSITIONS.get(OrderStatus(target))
    except ValueError:
        return None


class OrderStatusGuard:
    """
    Validates and applies staff status changes.

    Example:
        >>> guard = OrderStatusGuard(SqlOrderStatusStore(db), notifier=notify)
        >>> result = await guard.apply_transition(42, "ready")
        >>> result.outcome
        <TransitionOutcome.APPLIED: 'applied'>
    """

    def __init__(self, store: OrderStatusStore, notifier: Optional[Notifier] = None):
        self._store = store
        self._notifier = notifier

    async def apply_transition(
        self,
        order_id: int,
        requested_status: Union[str, OrderStatus],
    ) -> TransitionResult:
        """
        Move ``order_id`` to ``requested_status`` if the workflow allows it.

        Storage errors propagate to the caller.
        """
        requested = (
            requested_status.value
            if isinstance(requested_status, OrderStatus)
            else str(requested_status)
        )
        result = TransitionResult(
            outcome=TransitionOutcome.INVALID_STATUS,
            order_id=order_id,
            requested_status=requested,
        )

        expected = required_status_for(requested)
        if expected is None:
            return result
        result.expected_status = expected

        current = await self._store.get_status(order_id)
        if current is None:
            result.outcome = TransitionOutcome.NOT_FOUND
            return result
        result.current_status = current

        if current != expected:
            result.outcome = TransitionOutcome.INVALID_TRANSITION
            return result

        target = OrderStatus(requested)
        if not await self._store.compare_and_set_status(order_id, current, target):
            logger.info(f"Order #{order_id}: lost race moving {current.value} -> {requested}")
            result.outcome = TransitionOutcome.CONFLICT
            return result

        result.outcome = TransitionOutcome.APPLIED
        logger.info(f"Order #{order_id}: {current.value} -> {requested}")

        if self._notifier is not None:
            try:
                result.notified = bool(await self._notifier(order_id, target))
            except Exception as e:
                logger.error(f"Order #{order_id}: notification failed: {e}")

        return result
