"""
SQLAlchemy Database Models

Pickup orders and the single-row admin settings table that carries the
PromptPay id, LINE recipients and the staff session counters.

Author: Khalil Bannouri
Version: 3.0.0
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, Enum
from sqlalchemy.sql import func
from storefront.database import Base
import enum


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    READY = "ready"
    PICKED_UP = "picked_up"


def _enum_values(enum_cls) -> list[str]:
    """Persist enum values ('ready'), not member names ('READY')."""
    return [member.value for member in enum_cls]


class PickupType(str, enum.Enum):
    """When the customer collects the order."""
    ASAP = "ASAP"
    SCHEDULED = "SCHEDULED"


class Order(Base):
    """
    Main Order table - stores all storefront orders.

    Tracks the lifecycle from slip upload through approval to pickup.
    Staff only move orders along ``approved -> ready -> picked_up``.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_number = Column(String(20), nullable=False, unique=True, index=True)

    # =========================================================================
    # CUSTOMER INFORMATION
    # =========================================================================
    customer_name = Column(String(100), nullable=False)
    customer_phone = Column(String(20), nullable=False, index=True)
    customer_line_user_id = Column(String(64), nullable=True, index=True)
    customer_note = Column(Text, nullable=True)

    # =========================================================================
    # PICKUP
    # =========================================================================
    pickup_type = Column(
        Enum(PickupType, name="pickup_type", values_callable=_enum_values),
        default=PickupType.ASAP,
        nullable=False
    )
    pickup_time = Column(DateTime(timezone=True), nullable=True)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    items = Column(Text, nullable=False, default="[]")  # JSON string of ordered items
    total_amount = Column(Integer, nullable=False)  # Whole baht
    slip_url = Column(String(500), nullable=True)

    status = Column(
        Enum(OrderStatus, name="order_status", values_callable=_enum_values),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<Order #{self.order_number} - {self.customer_name} - {self.status.value}>"


class AdminSettings(Base):
    """
    Store-wide settings. The application keeps exactly one row.

    ``staff_session_version`` is the authoritative staff session counter;
    ``pin_version`` is the older counter still read when the former is unset.
    """
    __tablename__ = "admin_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)

    promptpay_id = Column(String(20), nullable=True)
    line_approver_id = Column(String(64), nullable=False, default="")
    line_staff_id = Column(String(64), nullable=False, default="")

    staff_pin_hash = Column(String(255), nullable=True)  # scrypt "hex.salt"
    pin_version = Column(Integer, nullable=False, default=1)
    staff_session_version = Column(Integer, nullable=True, default=1)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<AdminSettings session_version={self.staff_session_version}>"
