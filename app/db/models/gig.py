"""
Gig model.

filled_count/status are mutated only by app.services.gig_store.reserve_slot
and release_slot; the check constraints back the capacity invariant at the
database level.
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.db.base import Base


class GigStatus:
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"
    COMPLETED = "completed"


class Gig(Base):
    __tablename__ = "gigs"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    budget = Column(Integer, nullable=False)  # smallest currency unit
    currency = Column(String(3), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    filled_count = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default=GigStatus.ACTIVE, index=True)
    escrow_required = Column(Boolean, nullable=False, default=True)
    is_first_gig = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    company = relationship("User", backref="gigs")

    __table_args__ = (
        CheckConstraint("budget > 0", name="budget_positive"),
        CheckConstraint("quantity >= 1", name="quantity_positive"),
        CheckConstraint("filled_count >= 0 AND filled_count <= quantity", name="filled_within_quantity"),
        Index("idx_gig_company_created", "company_id", "created_at"),
    )

    @property
    def open_slots(self) -> int:
        return self.quantity - self.filled_count

    def __repr__(self):
        return f"<Gig(id={self.id}, status='{self.status}', filled={self.filled_count}/{self.quantity})>"
