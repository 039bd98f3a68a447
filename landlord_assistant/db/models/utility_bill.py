"""
UtilityBill Model - a utility statement logged against a unit or tenant
"""
import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, DateTime, Date, Boolean, Text, ForeignKey, Enum as SQLEnum,
)

from landlord_assistant.db.database import Base


class UtilityType(str, enum.Enum):
    INTERNET = "internet"
    WATER_GAS = "water_gas"
    HYDRO = "hydro"


class UtilityBill(Base):
    """חשבון שירותים (חשמל, מים/גז, אינטרנט)"""

    __tablename__ = "utility_bills"

    id = Column(Integer, primary_key=True, index=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="SET NULL"), nullable=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True, index=True)
    maintenance_id = Column(
        Integer, ForeignKey("maintenance_requests.id", ondelete="SET NULL"), nullable=True
    )

    utility_type = Column(
        SQLEnum(UtilityType, name="utility_type", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String(3), default="CAD", nullable=False)
    billing_period_start = Column(Date, nullable=True)
    billing_period_end = Column(Date, nullable=True)
    statement_url = Column(String(500), nullable=True)

    anomaly_flag = Column(Boolean, default=False, nullable=False)
    anomaly_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
