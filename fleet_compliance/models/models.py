import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Table,
    Integer,
    BigInteger,
    JSON,
    UniqueConstraint,
    CheckConstraint,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column, declared_attr

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


# Association table for many-to-many SubjectDocument<->UploadedDocument
subject_document_links = Table(
    "subject_document_links",
    Base.metadata,
    Column("subject_document_id", UUID(as_uuid=True), ForeignKey("subject_documents.id", ondelete="CASCADE"), primary_key=True),
    Column("uploaded_document_id", UUID(as_uuid=True), ForeignKey("uploaded_documents.id", ondelete="CASCADE"), primary_key=True),
    UniqueConstraint("subject_document_id", "uploaded_document_id", name="uq_subject_document_link"),
)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


# =====================
# Operational entities
# =====================

class HoldState:
    """Operational hold columns shared by vehicles, drivers, assistants and routes"""

    on_hold: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    on_hold_reason: Mapped[Optional[str]] = mapped_column(Text)
    on_hold_set_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    on_hold_set_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    on_hold_cleared_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    @declared_attr
    def on_hold_notification_id(cls) -> Mapped[Optional[uuid.UUID]]:
        return mapped_column(UUID(as_uuid=True), ForeignKey("notifications.id", ondelete="SET NULL"), index=True)


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[uuid.UUID] = uuid_pk()
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    personal_email: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    role: Mapped[Optional[str]] = mapped_column(String(50))  # Driver|PA|Coordinator|...
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class Driver(HoldState, Base):
    __tablename__ = "drivers"

    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("employees.id", ondelete="CASCADE"), primary_key=True)

    employee = relationship("Employee")


class PassengerAssistant(HoldState, Base):
    __tablename__ = "passenger_assistants"

    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("employees.id", ondelete="CASCADE"), primary_key=True)

    employee = relationship("Employee")


class Vehicle(HoldState, Base):
    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = uuid_pk()
    vehicle_identifier: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    registration: Mapped[Optional[str]] = mapped_column(String(50), index=True)
    assigned_employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("employees.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    assigned_employee = relationship("Employee")


class Route(HoldState, Base):
    __tablename__ = "routes"

    id: Mapped[uuid.UUID] = uuid_pk()
    route_number: Mapped[Optional[str]] = mapped_column(String(50))
    vehicle_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("vehicles.id", ondelete="SET NULL"), index=True)
    driver_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("drivers.employee_id", ondelete="SET NULL"), index=True)
    passenger_assistant_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("passenger_assistants.employee_id", ondelete="SET NULL"), index=True)

    vehicle = relationship("Vehicle")
    driver = relationship("Driver")
    passenger_assistant = relationship("PassengerAssistant")


# =====================
# Compliance notifications
# =====================

class Notification(Base):
    """One compliance event (expiring certificate, breakdown, tardiness) for one entity"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    notification_type: Mapped[str] = mapped_column(String(50), nullable=False, default="certificate_expiry", index=True)  # certificate_expiry|vehicle_breakdown|driver_tardiness
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)  # vehicle|driver|assistant
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    certificate_type: Mapped[Optional[str]] = mapped_column(String(100))
    certificate_name: Mapped[Optional[str]] = mapped_column(String(255))
    expiry_date: Mapped[Optional[date]] = mapped_column(Date)
    days_until_expiry: Mapped[Optional[int]] = mapped_column(Integer)
    recipient_employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("employees.id", ondelete="SET NULL"))
    recipient_email: Mapped[Optional[str]] = mapped_column(String(255))
    email_token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)  # pending|resolved|dismissed
    admin_response_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSON)
    email_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    employee_response_type: Mapped[Optional[str]] = mapped_column(String(50))  # document_uploaded|appointment_booked
    employee_response_details: Mapped[Optional[dict]] = mapped_column(JSON)
    employee_response_received_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        Index('idx_notifications_status_type', 'status', 'notification_type'),
        Index('idx_notifications_entity', 'entity_type', 'entity_id'),
    )


class AppointmentSlot(Base):
    __tablename__ = "appointment_slots"

    id: Mapped[uuid.UUID] = uuid_pk()
    slot_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    slot_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    booking = relationship("AppointmentBooking", back_populates="slot", uselist=False)

    __table_args__ = (
        CheckConstraint("slot_start < slot_end", name="ck_appointment_slot_window"),
    )


class AppointmentBooking(Base):
    """The single claim on a slot; the unique constraint is what enforces it"""
    __tablename__ = "appointment_bookings"

    id: Mapped[uuid.UUID] = uuid_pk()
    appointment_slot_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("appointment_slots.id", ondelete="RESTRICT"), nullable=False)
    notification_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("notifications.id", ondelete="RESTRICT"), nullable=False, index=True)
    booked_by_email: Mapped[Optional[str]] = mapped_column(String(255))
    booked_by_name: Mapped[Optional[str]] = mapped_column(String(255))
    booked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    status: Mapped[str] = mapped_column(String(20), default="booked")

    slot = relationship("AppointmentSlot", back_populates="booking")
    notification = relationship("Notification")

    __table_args__ = (
        UniqueConstraint("appointment_slot_id", name="uq_appointment_booking_slot"),
    )


class ComplianceCase(Base):
    __tablename__ = "compliance_cases"

    id: Mapped[uuid.UUID] = uuid_pk()
    notification_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False)
    application_status: Mapped[str] = mapped_column(String(20), default="not_applied", nullable=False)  # not_applied|applied
    date_applied: Mapped[Optional[date]] = mapped_column(Date)
    appointment_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    notification = relationship("Notification")

    __table_args__ = (
        UniqueConstraint("notification_id", name="uq_compliance_case_notification"),
    )


class SystemActivity(Base):
    """Admin summary feed: what a recipient did through their email link"""
    __tablename__ = "system_activities"

    id: Mapped[uuid.UUID] = uuid_pk()
    activity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # appointment_booking|document_upload
    notification_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("notifications.id", ondelete="SET NULL"), index=True)
    entity_type: Mapped[Optional[str]] = mapped_column(String(20))
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    entity_name: Mapped[Optional[str]] = mapped_column(String(255))
    certificate_name: Mapped[Optional[str]] = mapped_column(String(255))
    recipient_name: Mapped[Optional[str]] = mapped_column(String(255))
    recipient_email: Mapped[Optional[str]] = mapped_column(String(255))
    details: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


# =====================
# Document requirements & fulfillment
# =====================

class DocumentRequirement(Base):
    __tablename__ = "document_requirements"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    subject_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # driver|pa|vehicle|employee
    requires_expiry: Mapped[bool] = mapped_column(Boolean, default=False)
    requires_upload: Mapped[bool] = mapped_column(Boolean, default=False)
    requires_number: Mapped[bool] = mapped_column(Boolean, default=False)
    criticality: Mapped[str] = mapped_column(String(20), default="recommended")  # critical|recommended
    default_validity_days: Mapped[Optional[int]] = mapped_column(Integer)
    renewal_notice_days: Mapped[Optional[int]] = mapped_column(Integer)
    is_required: Mapped[bool] = mapped_column(Boolean, default=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class UploadedDocument(Base):
    """Raw file received from a recipient or coordinator"""
    __tablename__ = "uploaded_documents"

    id: Mapped[uuid.UUID] = uuid_pk()
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_url: Mapped[Optional[str]] = mapped_column(String(1024))
    content_type: Mapped[Optional[str]] = mapped_column(String(255))
    size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger)
    notification_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("notifications.id", ondelete="SET NULL"), index=True)
    uploaded_by_email: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class SubjectDocument(Base):
    """Fulfillment of one requirement by one concrete driver, PA, vehicle or employee"""
    __tablename__ = "subject_documents"

    id: Mapped[uuid.UUID] = uuid_pk()
    requirement_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("document_requirements.id", ondelete="RESTRICT"), nullable=False, index=True)
    subject_type: Mapped[str] = mapped_column(String(20), nullable=False)
    driver_employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    pa_employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    vehicle_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    status: Mapped[str] = mapped_column(String(20), default="missing", nullable=False)  # missing|pending|valid|expired
    certificate_number: Mapped[Optional[str]] = mapped_column(String(100))
    issue_date: Mapped[Optional[date]] = mapped_column(Date)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    updated_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    requirement = relationship("DocumentRequirement")
    files = relationship("UploadedDocument", secondary=subject_document_links, order_by="UploadedDocument.created_at")

    __table_args__ = (
        CheckConstraint(
            "(CASE WHEN driver_employee_id IS NOT NULL THEN 1 ELSE 0 END"
            " + CASE WHEN pa_employee_id IS NOT NULL THEN 1 ELSE 0 END"
            " + CASE WHEN vehicle_id IS NOT NULL THEN 1 ELSE 0 END"
            " + CASE WHEN employee_id IS NOT NULL THEN 1 ELSE 0 END) = 1",
            name="ck_subject_document_single_subject",
        ),
        Index('idx_subject_documents_subject', 'subject_type', 'requirement_id'),
    )


# =====================
# Incident reports that spawn notifications
# =====================

class TardinessReport(Base):
    __tablename__ = "tardiness_reports"

    id: Mapped[uuid.UUID] = uuid_pk()
    driver_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("drivers.employee_id", ondelete="CASCADE"), nullable=False, index=True)
    route_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("routes.id", ondelete="SET NULL"))
    session_type: Mapped[str] = mapped_column(String(10), nullable=False)  # AM|PM
    session_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    additional_notes: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)  # pending|approved|declined
    coordinator_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    coordinator_notes: Mapped[Optional[str]] = mapped_column(Text)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    notification_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("notifications.id", ondelete="SET NULL"), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    notification = relationship("Notification")


class VehicleBreakdown(Base):
    __tablename__ = "vehicle_breakdowns"

    id: Mapped[uuid.UUID] = uuid_pk()
    vehicle_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, index=True)
    route_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("routes.id", ondelete="SET NULL"))
    description: Mapped[Optional[str]] = mapped_column(Text)
    location: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default="reported", nullable=False)  # reported|resolved
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    notification_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("notifications.id", ondelete="SET NULL"), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)


class AuditLog(Base):
    """Append-only audit log for hold, scheduling and document actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # vehicles|drivers|passenger_assistants|appointment_slots|...
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|UPDATE|DELETE|HOLD|UNHOLD
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    source: Mapped[Optional[str]] = mapped_column(String(50))  # api|public|system
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )
