"""Modelos SQLAlchemy del ledger de invitados y check-in"""
from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Date, ForeignKey, Text,
    Uuid, CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from shared.database.connection import Base


# Escaneos permitidos por tipo de invitación
SCANS_PER_TYPE = {
    "single": 1,
    "double": 2,
}

STATE_NOT_STARTED = "NotStarted"
STATE_PARTIALLY_CONSUMED = "PartiallyConsumed"
STATE_FULLY_CONSUMED = "FullyConsumed"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    role = Column(String, nullable=False, server_default="scanner")  # admin, scanner
    is_active = Column(Boolean, nullable=False, server_default="1", default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relaciones
    scan_permissions = relationship("ScanPermission", back_populates="user", cascade="all, delete-orphan")


class Event(Base):
    __tablename__ = "events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    event_date = Column(Date, nullable=True)
    start_time = Column(String, nullable=True)  # HH:MM:SS tal como lo envía la app
    end_time = Column(String, nullable=True)
    location = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    category = Column(String, nullable=False, server_default="general", default="general")
    active = Column(Boolean, nullable=False, server_default="1", default=True)
    cancelled = Column(Boolean, nullable=False, server_default="0", default=False)
    completed = Column(Boolean, nullable=False, server_default="0", default=False)
    created_by_user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relaciones
    guests = relationship("Guest", back_populates="event", cascade="all, delete-orphan", passive_deletes=True)
    scan_records = relationship("ScanRecord", back_populates="event", cascade="all, delete-orphan", passive_deletes=True)
    scan_permissions = relationship("ScanPermission", back_populates="event", cascade="all, delete-orphan", passive_deletes=True)
    invitations = relationship("Invitation", back_populates="event", cascade="all, delete-orphan", passive_deletes=True)

    @property
    def accepts_scans(self) -> bool:
        """Solo se valida mientras el evento está activo y no cancelado"""
        return bool(self.active) and not self.cancelled and not self.completed


class Guest(Base):
    __tablename__ = "guests"
    __table_args__ = (
        CheckConstraint(
            "consumed_scans >= 0 AND ((type = 'single' AND consumed_scans <= 1) "
            "OR (type = 'double' AND consumed_scans <= 2))",
            name="ck_guests_consumed_scans_range"
        ),
        CheckConstraint("type IN ('single', 'double')", name="ck_guests_type"),
        Index("ix_guests_event_id_id", "event_id", "id"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False, server_default="", default="")
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    type = Column(String, nullable=False, server_default="single", default="single")  # single, double
    consumed_scans = Column(Integer, nullable=False, server_default="0", default=0)
    qr_token = Column(String, unique=True, index=True, nullable=False)
    token_issued_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    invitation_status = Column(String, nullable=False, server_default="not_sent", default="not_sent")  # not_sent, queued, sent, failed
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relaciones
    event = relationship("Event", back_populates="guests")
    scan_records = relationship("ScanRecord", back_populates="guest", passive_deletes=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()

    @property
    def total_allowed_scans(self) -> int:
        return SCANS_PER_TYPE[self.type]

    @property
    def remaining_scans(self) -> int:
        return self.total_allowed_scans - self.consumed_scans

    @property
    def scan_state(self) -> str:
        if self.consumed_scans <= 0:
            return STATE_NOT_STARTED
        if self.consumed_scans >= self.total_allowed_scans:
            return STATE_FULLY_CONSUMED
        return STATE_PARTIALLY_CONSUMED

    @property
    def status_label(self) -> str:
        """Etiqueta que muestra la app: Pending / Completed / N remaining"""
        if self.consumed_scans == 0:
            return "Pending"
        if self.remaining_scans == 0:
            return "Completed"
        return f"{self.remaining_scans} remaining"


class ScanRecord(Base):
    """Registro append-only de cada check-in aceptado"""
    __tablename__ = "scan_records"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    guest_id = Column(Uuid(as_uuid=True), ForeignKey("guests.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    scanned_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    scanned_by_user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    type = Column(String, nullable=False)  # copiado del invitado al momento del escaneo

    # Relaciones
    guest = relationship("Guest", back_populates="scan_records")
    event = relationship("Event", back_populates="scan_records")
    scanned_by = relationship("User", foreign_keys=[scanned_by_user_id])


class ScanPermission(Base):
    """Operadores habilitados para escanear en un evento"""
    __tablename__ = "scan_permissions"
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_scan_permissions_event_user"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    granted_by_user_id = Column(Uuid(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relaciones
    event = relationship("Event", back_populates="scan_permissions")
    user = relationship("User", back_populates="scan_permissions")


class Invitation(Base):
    __tablename__ = "invitations"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    guest_id = Column(Uuid(as_uuid=True), ForeignKey("guests.id", ondelete="CASCADE"), nullable=False, index=True)
    channel = Column(String, nullable=False)  # sms, whatsapp
    message = Column(Text, nullable=False)
    qr_url = Column(String, nullable=False)
    status = Column(String, nullable=False, server_default="queued", default="queued")  # queued, sent, failed
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    # Relaciones
    event = relationship("Event", back_populates="invitations")
    guest = relationship("Guest")
