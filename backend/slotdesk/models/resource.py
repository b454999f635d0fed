from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid
from slotdesk.core.database import Base


class Resource(Base):
    """A bookable unit, e.g. one demo vehicle on the lot."""

    __tablename__ = "resources"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(UUID(as_uuid=True), ForeignKey("businesses.id"), nullable=False)

    model = Column(String, nullable=False)  # class label, e.g. "Model Y"
    trim = Column(String, nullable=True)  # variant label, e.g. "Long Range"
    label = Column(String, nullable=True)  # stock number / plate
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    business = relationship("Business", backref="resources")

    __table_args__ = (
        Index("idx_resources_business_model", "business_id", "model"),
    )

    def __repr__(self):
        return f"<Resource(id={self.id}, model={self.model}, trim={self.trim})>"
