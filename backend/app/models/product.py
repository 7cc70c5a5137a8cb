"""Catalog product as seen by the stock engine (read-only from the core's side)."""
from datetime import datetime
from typing import Optional

from sqlalchemy import DECIMAL, Boolean, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.base import Base
from backend.app.core.clock import utcnow
from backend.app.core.constants import PRODUCT_AVAILABLE


class Product(Base):
    __tablename__ = 'products'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    price: Mapped[float] = mapped_column(DECIMAL(10, 2))
    shipping_fee: Mapped[float] = mapped_column(DECIMAL(10, 2), default=0, server_default='0')
    # Catalog quantity; holds and promoted reservations are subtracted from it, never written back
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(20), default=PRODUCT_AVAILABLE, server_default=PRODUCT_AVAILABLE)
    timer_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    timer_duration: Mapped[int] = mapped_column(Integer, default=10)  # minutes
    stream_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        Index('ix_products_status', 'status'),
    )

    @property
    def is_purchasable(self) -> bool:
        return self.status == PRODUCT_AVAILABLE
