# models.py
"""
Database models for the order service.

`WizardSession` holds one open order wizard per row (the serialized
controller state); `OrderRecord` is the local ledger of orders the backend
accepted.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, DateTime, JSON, Text

from tweeshirt.db import Base


def _uuid_str() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------
# Models
# -----------------------
class WizardSession(Base):
    __tablename__ = "order_wizards"
    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_email = Column(String(320), nullable=False, index=True)
    descriptor = Column(String(255), nullable=True)  # filename hint for the partner upload
    stage = Column(Integer, nullable=False, default=1)
    state = Column(JSON, nullable=False, default=dict)  # StageController snapshot
    submission_state = Column(String(20), nullable=False, default="idle")
    # Values: idle, in_flight, success, error
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class OrderRecord(Base):
    __tablename__ = "orders"
    id = Column(String(36), primary_key=True, default=_uuid_str)
    user_email = Column(String(320), nullable=False, index=True)
    backend_order_id = Column(String(255), nullable=True)
    garment_color = Column(String(64), nullable=False)
    garment_size = Column(String(8), nullable=False)
    total_cents = Column(Integer, nullable=False)
    currency = Column(String(10), nullable=False, default="usd")
    placement_json = Column(JSON, nullable=False)
    partner_response_json = Column(JSON, nullable=True)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
