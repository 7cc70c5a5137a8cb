"""Waitlist reservations, ordered per product by sequence_number."""
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.base import Base
from backend.app.core.clock import utcnow
from backend.app.core.constants import RESERVATION_WAITING


class Reservation(Base):
    __tablename__ = 'reservations'
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    product_id: Mapped[int] = mapped_column(ForeignKey('products.id'), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    # Minted by the sequence allocator only; never reused within a product
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=RESERVATION_WAITING, nullable=False)
    promoted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    # Set only while PROMOTED
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('product_id', 'sequence_number', name='uq_reservations_product_sequence'),
        Index('ix_reservations_product_status_seq', 'product_id', 'status', 'sequence_number'),
        Index('ix_reservations_user_status', 'user_id', 'status'),
        Index('ix_reservations_status_expires_at', 'status', 'expires_at'),
    )
