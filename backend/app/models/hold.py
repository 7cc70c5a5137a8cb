"""Active cart holds: time-boxed claims on a product's stock."""
from datetime import datetime
from typing import Optional

from sqlalchemy import DECIMAL, Boolean, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.base import Base
from backend.app.core.clock import utcnow
from backend.app.core.constants import HOLD_ACTIVE


class Hold(Base):
    """
    One row per (user, product, variant) claim.

    At most one ACTIVE row exists per (user_id, product_id, color, size); adding
    the same variant again increases quantity on that row. Enforced by the hold
    ledger under the product row lock, since NULL variants defeat a unique index.
    """
    __tablename__ = 'holds'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id'), nullable=False)
    # Snapshot at hold time
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    size: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[float] = mapped_column(DECIMAL(10, 2), nullable=False)
    shipping_fee: Mapped[float] = mapped_column(DECIMAL(10, 2), default=0)
    timer_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=HOLD_ACTIVE, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_holds_product_status', 'product_id', 'status'),
        Index('ix_holds_user_status', 'user_id', 'status'),
        Index('ix_holds_status_expires_at', 'status', 'expires_at'),
    )
