from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Index, CheckConstraint, func, text
from sqlalchemy.dialects.postgresql import UUID, ExcludeConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from slotdesk.core.database import Base

class Appointment(Base):
    __tablename__ = "appointments"
    
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(UUID(as_uuid=True), ForeignKey("businesses.id"), nullable=False)
    resource_id = Column(UUID(as_uuid=True), ForeignKey("resources.id"), nullable=True)
    appointment_type = Column(String, nullable=False, default="appointment")
    
    # Customer Info
    customer_name = Column(String, nullable=False)
    customer_phone = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)
    
    # Slot
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False)
    local_start = Column(String, nullable=False)  # caller wall-clock time as requested
    timezone = Column(String, nullable=False)
    
    # Status
    status = Column(String, nullable=False, default="booked")  # booked, cancelled
    source = Column(String, nullable=False, default="agent")
    
    # Calendar link
    calendar_id = Column(String, nullable=True)
    external_event_id = Column(String, nullable=True)
    
    notes = Column(Text, nullable=True)
    idempotency_key = Column(String, nullable=False, unique=True)
    
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    # Relationships
    business = relationship("Business", backref="appointments")
    resource = relationship("Resource", backref="appointments")

    __table_args__ = (
        # One unit can never carry two overlapping live bookings
        ExcludeConstraint(
            (resource_id, "="),
            (func.tstzrange(start_at, end_at), "&&"),
            name="appointments_resource_no_overlap",
            using="gist",
            where=text("resource_id IS NOT NULL AND status = 'booked'"),
        ),
        CheckConstraint("end_at > start_at", name="appointments_window_positive"),
        Index("idx_appointments_business_status_start", "business_id", "status", "start_at"),
    )
    
    def __repr__(self):
        return f"<Appointment(id={self.id}, customer={self.customer_name}, start={self.start_at})>"
