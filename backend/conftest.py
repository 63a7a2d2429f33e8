from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ.setdefault("EMAIL_PROVIDER", "none")

from trainportal.database import Base  # noqa: E402
from trainportal.apps.accounts import models as account_models  # noqa: E402
from trainportal.apps.audit import models as audit_models  # noqa: E402
from trainportal.apps.courses import models as course_models  # noqa: E402
from trainportal.apps.notifications import models as notification_models  # noqa: E402
from trainportal.apps.notifications.dispatcher import NotificationDispatcher  # noqa: E402
from trainportal.apps.notifications.preferences import PreferenceGate  # noqa: E402

ALL_TABLES = [
    account_models.Client.__table__,
    account_models.User.__table__,
    course_models.Course.__table__,
    course_models.CourseEdition.__table__,
    course_models.Lesson.__table__,
    course_models.Employee.__table__,
    course_models.Registration.__table__,
    course_models.AttendanceRecord.__table__,
    course_models.Certificate.__table__,
    notification_models.Notification.__table__,
    notification_models.EmailLog.__table__,
    notification_models.NotificationPreference.__table__,
    audit_models.AuditEvent.__table__,
]


def make_engine(url: str = "sqlite+pysqlite:///:memory:"):
    engine = create_engine(url)

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy
    # emit BEGIN itself (documented SQLAlchemy recipe).
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine, tables=ALL_TABLES)
    return engine


@pytest.fixture()
def db_session():
    engine = make_engine()
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


class RecordingOutbox:
    """Stands in for EmailOutbox: keeps submitted jobs instead of sending them."""

    def __init__(self) -> None:
        self.submitted = []

    def submit(self, message) -> bool:
        self.submitted.append(message)
        return True


@pytest.fixture()
def outbox():
    return RecordingOutbox()


@pytest.fixture()
def gate():
    return PreferenceGate()


@pytest.fixture()
def dispatcher(gate, outbox):
    return NotificationDispatcher(gate, outbox)


@pytest.fixture()
def admin_user(db_session):
    user = account_models.User(
        email="admin@example.com",
        full_name="Portal Admin",
        role=account_models.AccountRole.ADMIN,
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture()
def client(db_session):
    client = account_models.Client(
        company_name="Acme Srl",
        referent_name="Mario Rossi",
        referent_email="hr@acme.example",
        is_active=True,
    )
    db_session.add(client)
    db_session.commit()
    return client


@pytest.fixture()
def course(db_session):
    course = course_models.Course(title="Fire Safety", duration_hours=6)
    db_session.add(course)
    db_session.commit()
    return course


@pytest.fixture()
def make_edition(db_session, course, client):
    def _make(status=course_models.EditionStatus.DRAFT, **fields):
        values = {
            "start_date": datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc),
            "end_date": datetime(2025, 1, 20, 17, 0, tzinfo=timezone.utc),
            "registration_deadline": datetime(2025, 1, 5, tzinfo=timezone.utc),
        }
        values.update(fields)
        edition = course_models.CourseEdition(
            course_id=course.id,
            client_id=values.pop("client_id", client.id),
            edition_number=values.pop("edition_number", 1),
            status=status,
            revision=values.pop("revision", 0),
            **values,
        )
        db_session.add(edition)
        db_session.commit()
        return edition

    return _make


@pytest.fixture()
def make_employee(db_session, client):
    counter = {"n": 0}

    def _make(first_name="Anna", last_name="Bianchi", edition=None):
        counter["n"] += 1
        employee = course_models.Employee(
            client_id=client.id,
            first_name=first_name,
            last_name=last_name,
            fiscal_code=f"FSCL{counter['n']:012d}",
        )
        db_session.add(employee)
        db_session.flush()
        if edition is not None:
            db_session.add(
                course_models.Registration(
                    edition_id=edition.id,
                    employee_id=employee.id,
                    client_id=client.id,
                    status=course_models.RegistrationStatus.CONFIRMED,
                )
            )
        db_session.commit()
        return employee

    return _make


@pytest.fixture()
def file_session_factory(tmp_path):
    """Session factory over an on-disk database, for code that opens its own sessions from threads."""
    engine = make_engine(f"sqlite+pysqlite:///{tmp_path / 'portal.db'}")
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    try:
        yield factory
    finally:
        engine.dispose()
