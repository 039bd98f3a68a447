"""
Unit Model - a rentable property unit
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime

from landlord_assistant.db.database import Base


class Unit(Base):
    """יחידת דיור"""

    __tablename__ = "units"

    id = Column(Integer, primary_key=True, index=True)
    label = Column(String(100), nullable=False)
    address = Column(String(255), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
