"""
shared/models/models.py
All SQLAlchemy ORM models for the Student Bus Pass Booking platform.
Integer primary keys throughout; seat counters live on the buses table.
"""

from datetime import date, datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from config.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enumerations ──────────────────────────────────────────────

class AdminRole(str, PyEnum):
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


# ── Mixins ────────────────────────────────────────────────────

class TimestampMixin:
    """Adds created_at and updated_at to any model."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )


# ── Admin ─────────────────────────────────────────────────────

class AdminUser(TimestampMixin, Base):
    """Back-office operator. Authenticates with username + password."""
    __tablename__ = "admin_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default=AdminRole.ADMIN.value, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    audit_logs: Mapped[List["AdminAuditLog"]] = relationship(back_populates="admin")

    def __repr__(self) -> str:
        return f"<AdminUser {self.username} ({self.role})>"


class AdminAuditLog(Base):
    """Append-only record of every admin mutation."""
    __tablename__ = "admin_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    admin_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("admin_users.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    admin: Mapped[Optional["AdminUser"]] = relationship(back_populates="audit_logs")

    __table_args__ = (Index("ix_admin_audit_logs_entity", "entity_type", "entity_id"),)


class AdminSettings(Base):
    """Singleton row (id = 1): booking gate and the current round's travel dates."""
    __tablename__ = "admin_settings"

    SINGLETON_ID = 1

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SINGLETON_ID)
    booking_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    go_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    return_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
        nullable=False,
    )


# ── Inventory & Catalog ───────────────────────────────────────

class Bus(TimestampMixin, Base):
    """
    A bus serving one route. ``available_seats`` is owned by the seat
    accounting engine; nothing else writes it.
    """
    __tablename__ = "buses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    route_code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    total_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    available_seats: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    stops: Mapped[List["RouteStop"]] = relationship(
        back_populates="bus",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="RouteStop.stop_order",
    )

    __table_args__ = (
        CheckConstraint("total_seats >= 0", name="ck_buses_total_seats_non_negative"),
        CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_buses_available_seats_range",
        ),
    )

    def __repr__(self) -> str:
        return f"<Bus {self.route_code} {self.available_seats}/{self.total_seats}>"


class RouteStop(TimestampMixin, Base):
    """A destination on a route with its fare in whole rupees."""
    __tablename__ = "route_stops"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    route_code: Mapped[str] = mapped_column(
        String(50), ForeignKey("buses.route_code", ondelete="CASCADE"), nullable=False
    )
    stop_name: Mapped[str] = mapped_column(String(255), nullable=False)
    fare: Mapped[int] = mapped_column(Integer, nullable=False)
    stop_order: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    bus: Mapped["Bus"] = relationship(back_populates="stops")

    __table_args__ = (
        UniqueConstraint("route_code", "stop_name", name="uq_route_stops_route_stop_name"),
        UniqueConstraint("route_code", "stop_order", name="uq_route_stops_route_stop_order"),
        CheckConstraint("fare >= 0", name="ck_route_stops_fare_non_negative"),
    )


# ── Ledger ────────────────────────────────────────────────────

class Booking(Base):
    """
    One bus pass. fare, bus_name, go_date and return_date are copied at
    booking time and never re-derived from the catalog or settings.
    """
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    admission_number: Mapped[str] = mapped_column(String(7), nullable=False)
    student_name: Mapped[str] = mapped_column(String(255), nullable=False)
    bus_route: Mapped[str] = mapped_column(String(50), nullable=False)
    destination: Mapped[str] = mapped_column(String(255), nullable=False)
    payment_status: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    fare: Mapped[int] = mapped_column(Integer, nullable=False)
    bus_name: Mapped[str] = mapped_column(String(100), nullable=False)
    go_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    return_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    razorpay_payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    razorpay_order_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    razorpay_signature: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_bookings_admission_number", "admission_number"),
        Index("ix_bookings_bus_route", "bus_route"),
        Index("ix_bookings_created_at", "created_at"),
        CheckConstraint("fare >= 0", name="ck_bookings_fare_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Booking {self.id} {self.admission_number} {self.bus_route}>"


class BookingRound(Base):
    """Archive row written once per reset; immutable afterwards."""
    __tablename__ = "booking_rounds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    go_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    return_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total_bookings: Mapped[int] = mapped_column(Integer, nullable=False)
    total_revenue: Mapped[int] = mapped_column(Integer, nullable=False)
    reset_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
