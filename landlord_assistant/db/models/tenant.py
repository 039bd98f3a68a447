"""
Tenant Model
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship

from landlord_assistant.db.database import Base


class Tenant(Base):
    """דייר רשום — מזוהה לפי מספר הוואטסאפ שלו"""

    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(32), unique=True, index=True, nullable=True)
    email = Column(String(255), nullable=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="SET NULL"), nullable=True)
    # העדפת הדייר לתשובות אוטומטיות; False גובר על ההגדרה הגלובלית
    auto_reply_enabled = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    unit = relationship("Unit", lazy="selectin")
