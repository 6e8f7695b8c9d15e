# pylint: disable=too-few-public-methods
"""SQLAlchemy models for the device settings database schema."""

from datetime import datetime

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class DeviceSetting(Base):
    """One persisted key/value pair of the device configuration."""

    __tablename__ = "device_settings"

    key = Column(String, primary_key=True, index=True)
    value = Column(String, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
