"""
Reminder Model - a monthly rent or utility reminder broadcast to tenants
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Enum as SQLEnum

from landlord_assistant.db.database import Base


class ReminderType(str, enum.Enum):
    RENT = "rent"
    UTILITY = "utility"


class ReminderStyle(str, enum.Enum):
    SHORT = "short"
    MEDIUM = "medium"
    PROFESSIONAL = "professional"
    CASUAL = "casual"


class Reminder(Base):
    """
    תזכורת חודשית.

    last_sent_stamp ("YYYY-MM-DDTHH:MMZ") מונע שליחה כפולה באותה דקה,
    גם אחרי restart.
    """

    __tablename__ = "reminders"

    id = Column(Integer, primary_key=True, index=True)
    reminder_type = Column(
        SQLEnum(ReminderType, name="reminder_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    day_of_month = Column(Integer, nullable=False)
    time_utc = Column(String(5), nullable=False)
    style = Column(
        SQLEnum(ReminderStyle, name="reminder_style", values_callable=lambda x: [e.value for e in x]),
        default=ReminderStyle.MEDIUM,
        nullable=False,
    )
    is_active = Column(Boolean, default=True, nullable=False)
    last_sent_stamp = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
