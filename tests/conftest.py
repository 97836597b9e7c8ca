import os
import smtplib
import tempfile
import uuid
from datetime import date, timedelta

_tmp = tempfile.mkdtemp(prefix="fleet-compliance-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_tmp}/app.db")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ENABLE_EMAIL", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("STORAGE_DIR", f"{_tmp}/storage")
os.environ.setdefault("ADMIN_NOTIFICATION_EMAILS", "")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from fleet_compliance.auth.security import create_access_token
from fleet_compliance.db import Base, get_db, make_engine
from fleet_compliance.main import app
from fleet_compliance.models.models import (
    AppointmentSlot,
    DocumentRequirement,
    Driver,
    Employee,
    Notification,
    PassengerAssistant,
    Route,
    User,
    Vehicle,
)
from fleet_compliance.services.mailer import EmailSender, get_email_sender
from fleet_compliance.storage.local_provider import LocalStorageProvider, get_storage


class RecordingSender(EmailSender):
    """Collects outgoing mail instead of talking to SMTP."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    def is_configured(self) -> bool:
        return True

    def send(self, to, subject, text_body, html_body=None) -> bool:
        if self.fail:
            raise smtplib.SMTPException("connection refused")
        self.sent.append({"to": list(to), "subject": subject, "body": text_body})
        return True


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(str(tmp_path / "storage"))


@pytest.fixture
def client(session_factory, sender, storage):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_email_sender] = lambda: sender
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user(db):
    u = User(email="coordinator@example.com", full_name="Casey Coordinator", is_active=True)
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


class Factory:
    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def employee(self, full_name="Sam Smith", email=None, role=None):
        return self._save(Employee(full_name=full_name, personal_email=email, role=role))

    def driver(self, full_name="Dana Driver", email=None):
        emp = self.employee(full_name, email, "Driver")
        return self._save(Driver(employee_id=emp.id))

    def assistant(self, full_name="Pat Assistant", email=None):
        emp = self.employee(full_name, email, "PA")
        return self._save(PassengerAssistant(employee_id=emp.id))

    def vehicle(self, identifier="BUS-01", registration="AB12 CDE", assigned=None):
        return self._save(
            Vehicle(
                vehicle_identifier=identifier,
                registration=registration,
                assigned_employee_id=assigned.id if assigned else None,
            )
        )

    def route(self, number="R1", vehicle=None, driver=None, assistant=None):
        return self._save(
            Route(
                route_number=number,
                vehicle_id=vehicle.id if vehicle else None,
                driver_id=driver.employee_id if driver else None,
                passenger_assistant_id=assistant.employee_id if assistant else None,
            )
        )

    def notification(
        self,
        entity_type="vehicle",
        entity_id=None,
        days=5,
        certificate_type="mot_date",
        certificate_name="MOT",
        recipient_email="owner@example.com",
        recipient_employee_id=None,
        notification_type="certificate_expiry",
        status="pending",
    ):
        return self._save(
            Notification(
                notification_type=notification_type,
                entity_type=entity_type,
                entity_id=entity_id or uuid.uuid4(),
                certificate_type=certificate_type,
                certificate_name=certificate_name,
                expiry_date=date.today() + timedelta(days=days),
                days_until_expiry=days,
                recipient_email=recipient_email,
                recipient_employee_id=recipient_employee_id,
                email_token=uuid.uuid4().hex + uuid.uuid4().hex,
                status=status,
            )
        )

    def slot(self, start, minutes=30, notes=None):
        return self._save(AppointmentSlot(slot_start=start, slot_end=start + timedelta(minutes=minutes), notes=notes))

    def requirement(self, name="DBS Certificate", subject_type="driver", is_active=True, **kwargs):
        return self._save(DocumentRequirement(name=name, subject_type=subject_type, is_active=is_active, **kwargs))


@pytest.fixture
def factory(db):
    return Factory(db)
