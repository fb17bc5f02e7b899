"""SQLAlchemy ORM models for the order ledger"""

import uuid
from sqlalchemy import Column, DateTime, Integer, JSON, Text, Uuid
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class TravelOrder(Base):
    """Purchased proof-of-travel bundle and its validity window"""

    __tablename__ = "travel_order"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner = Column(Text, nullable=False, index=True)
    bundle = Column(JSON, nullable=False)  # list of kind names
    confirmations = Column(JSON, nullable=False, default=dict)  # kind -> confirmation id
    status = Column(Text, nullable=False, default="active", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    risk = Column(JSON, nullable=False)
    trip_metadata = Column(JSON, nullable=False, default=dict)
    cancel_reason = Column(Text, nullable=True)
    extension_count = Column(Integer, nullable=False, default=0)
    expiry_warning_sent_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
