from sqlalchemy import Column, Integer, Float, String, DateTime, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from datetime import datetime
import uuid
from slotdesk.core.database import Base

class Business(Base):
    __tablename__ = "businesses"
    
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    phone = Column(String)
    email = Column(String)
    
    # Scheduling policy
    timezone = Column(String, nullable=False, default="America/Chicago")
    office_start = Column(Float, nullable=False, default=9.0)  # fractional hour, 7.5 = 07:30
    office_end = Column(Float, nullable=False, default=17.0)
    slot_duration_minutes = Column(Integer, nullable=False, default=30)
    capacity = Column(Integer, nullable=False, default=1)  # concurrent bookings on the primary calendar
    
    # Google Calendar Integration
    google_calendar_id = Column(String, nullable=True)  # primary / shared calendar
    blocking_calendar_id = Column(String, nullable=True)  # hard holds; defaults to google_calendar_id
    google_refresh_token = Column(String, nullable=True)  # Encrypted
    google_token_expires_at = Column(DateTime, nullable=True)
    
    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("capacity >= 1", name="businesses_capacity_positive"),
        CheckConstraint(
            "office_start >= 0 AND office_start < office_end AND office_end <= 24",
            name="businesses_office_hours_valid",
        ),
    )
    
    def __repr__(self):
        return f"<Business(id={self.id}, name={self.name})>"
