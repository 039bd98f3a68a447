"""
AppSetting Model - runtime key/value settings
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text

from landlord_assistant.db.database import Base


class AppSetting(Base):
    """הגדרה גלובלית שניתנת לשינוי בזמן ריצה (למשל השהיית תשובה אוטומטית)"""

    __tablename__ = "app_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
