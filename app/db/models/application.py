"""
Application model: one row per (gig, freelancer) pair.

status moves only through app.services.application_workflow.
"""
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Index, UniqueConstraint, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.db.base import Base


class ApplicationStatus:
    PENDING = "pending"
    PAYMENT_PENDING = "payment_pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    TERMINAL = (ACCEPTED, REJECTED)


class Application(Base):
    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, index=True)
    gig_id = Column(Integer, ForeignKey("gigs.id"), nullable=False, index=True)
    freelancer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    status = Column(String, nullable=False, default=ApplicationStatus.PENDING, index=True)
    iterations = Column(Integer, nullable=False, default=3)
    is_priority = Column(Boolean, nullable=False, default=False)  # captured once at apply time
    cover_letter = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Latest acceptance attempt; older EscrowOrders for this application are superseded
    current_escrow_order_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    gig = relationship("Gig", backref="applications")
    freelancer = relationship("User", backref="applications")

    __table_args__ = (
        UniqueConstraint("gig_id", "freelancer_id", name="uq_application_gig_freelancer"),
        CheckConstraint("iterations >= 1 AND iterations <= 20", name="iterations_range"),
        Index("idx_application_gig_status", "gig_id", "status"),
    )

    def __repr__(self):
        return f"<Application(id={self.id}, gig_id={self.gig_id}, status='{self.status}')>"
