"""
Database models
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Float, Text, ForeignKey, DateTime, Enum, JSON
from sqlalchemy.orm import relationship
import enum

from .connection import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    TECHNICIAN = "technician"


class Admin(Base):
    """Admin accounts"""
    __tablename__ = "admins"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow)


class Technician(Base):
    """Technician accounts"""
    __tablename__ = "technicians"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    phone = Column(String(30))
    avatar_url = Column(String(500))
    fcm_token = Column(String(500))
    # call ids as strings; display-only back-reference, calls.tech_id is authoritative
    assigned_calls = Column(JSON, default=list)
    created_at = Column(DateTime, default=utcnow)


class CallStatus(str, enum.Enum):
    PENDING = "Pending"
    IN_PROCESS = "In Process"
    COMPLETED = "Completed"
    CLOSED = "Closed"
    CANCELLED = "Cancelled"


class Call(Base):
    """Forwarded service calls"""
    __tablename__ = "calls"

    id = Column(Integer, primary_key=True, index=True)
    client_name = Column(String(200), nullable=False, index=True)
    phone = Column(String(30), index=True)
    address = Column(Text)
    service_type = Column(String(100))
    price = Column(Float, default=0.0)
    notes = Column(Text)
    time_zone = Column(String(50))
    status = Column(
        Enum(CallStatus, values_callable=lambda e: [m.value for m in e], native_enum=False),
        default=CallStatus.PENDING,
        nullable=False,
        index=True
    )
    # no foreign key: deleting a technician keeps the call history
    tech_id = Column(Integer, index=True)
    tech_name = Column(String(50))
    created_at = Column(DateTime, default=utcnow, index=True)
    closed_at = Column(DateTime, index=True)

    payment_status = Column(String(20), index=True)
    payment_at = Column(DateTime)
    payment_ref = Column(String(100))


class PaymentMode(str, enum.Enum):
    ONLINE = "Online"
    CASH = "Cash"
    BOTH = "Both"


class Payment(Base):
    """Money collected by a technician"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    tech_id = Column(Integer, index=True)
    tech_username = Column(String(50))
    receiver = Column(String(200))
    mode = Column(String(10), nullable=False)
    online_amount = Column(Float, default=0.0)
    cash_amount = Column(Float, default=0.0)
    receiver_signature = Column(Text)
    created_at = Column(DateTime, default=utcnow, index=True)

    calls = relationship("PaymentCall", back_populates="payment", cascade="all, delete-orphan")


class PaymentCall(Base):
    """One call covered by a payment, with a snapshot of the call at submission"""
    __tablename__ = "payment_calls"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True)
    # string and not a foreign key: the call may have been deleted since
    call_id = Column(String(64), index=True)
    client_name = Column(String(200))
    phone = Column(String(30))
    address = Column(Text)
    service_type = Column(String(100))
    price = Column(Float, default=0.0)
    online_amount = Column(Float, default=0.0)
    cash_amount = Column(Float, default=0.0)

    payment = relationship("Payment", back_populates="calls")


class ServiceForm(Base):
    """Completed job report with photos and signature"""
    __tablename__ = "service_forms"

    id = Column(Integer, primary_key=True, index=True)
    tech_id = Column(Integer, index=True)
    tech_username = Column(String(50), index=True)
    client_name = Column(String(200))
    address = Column(Text)
    phone = Column(String(30))
    payment = Column(Float, default=0.0)
    status = Column(String(30))
    signature = Column(Text)
    photos = Column(JSON, default=list)
    form_key = Column(String(500), unique=True, index=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
