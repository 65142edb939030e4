"""
Database Models — SQLAlchemy.

Tables:
  - model_records: Records of the models owning attachments (JSON payload)
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime, JSON, Index
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class ModelRecord(Base):
    """One model instance; attachments live inside `data` as descriptor dicts."""
    __tablename__ = "model_records"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    model_type = Column(String(100), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    data = Column(JSON, default=dict)

    __table_args__ = (
        Index("ix_model_records_type_id", "model_type", "id"),
    )

    def __repr__(self):
        return f"<ModelRecord {self.model_type}/{self.id}>"

    def to_dict(self) -> dict:
        """Record as seen by the binary services: payload plus its uuid."""
        result = dict(self.data or {})
        result["uuid"] = self.id
        return result
