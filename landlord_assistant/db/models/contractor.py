"""
Contractor Model
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean

from landlord_assistant.db.database import Base


class Contractor(Base):
    """קבלן / בעל מקצוע — הודעותיו מועברות לבעלי הדירות כפי שהן"""

    __tablename__ = "contractors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(32), unique=True, index=True, nullable=False)
    email = Column(String(255), nullable=True)
    role = Column(String(100), nullable=True)  # plumber, electrician...
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
