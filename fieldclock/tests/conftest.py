import os
_default_test_secret = "test-jwt-secret-for-pytest-only-0000000000000000"
if len(os.environ.get("JWT_SECRET", "")) < 32:
    os.environ["JWT_SECRET"] = _default_test_secret
os.environ.setdefault("ENV", "test")

import subprocess
from datetime import datetime
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url

REPO_ROOT = Path(__file__).resolve().parents[2]

TEST_DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{REPO_ROOT / 'fieldclock_test.db'}")
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from fieldclock import database
from fieldclock.database import SessionLocal
from fieldclock.models.job import Job, JobAssignment
from fieldclock.models.time_entry import TimeEntry

# Job sites used across the suite sit on this point.
SITE_LAT = 40.0
SITE_LNG = -75.0
METERS_PER_DEGREE_LAT = 111194.93


def north_of(lat: float, lng: float, meters: float):
    """Point `meters` due north of (lat, lng)."""
    return lat + meters / METERS_PER_DEGREE_LAT, lng


def get_access_token(client, company_id: int, user_id: str = "test", role: str = "EMPLOYEE") -> str:
    resp = client.post("/auth/token", json={"user_id": user_id, "company_id": company_id, "role": role})
    assert resp.status_code == 200, f"token request failed: {resp.status_code} {resp.text}"
    data = resp.json()
    assert "access_token" in data, f"token response missing access_token: {data}"
    return data["access_token"]


def auth_headers(client, company_id: int, user_id: str = "test", role: str = "EMPLOYEE") -> dict:
    token = get_access_token(client, company_id, user_id=user_id, role=role)
    return {"Authorization": f"Bearer {token}", "X-Company-Id": str(company_id)}


def _ensure_database_exists(database_url: str) -> None:
    url = make_url(database_url)

    if not url.drivername.startswith("postgresql"):
        return

    db_name = url.database
    admin_url = url.set(database="postgres")
    admin_engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")

    try:
        with admin_engine.connect() as conn:
            exists = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": db_name},
            ).scalar()
            if not exists:
                safe_db_name = db_name.replace('"', '""')
                conn.execute(text(f'CREATE DATABASE "{safe_db_name}"'))
    finally:
        admin_engine.dispose()


def _reset_sqlite_file(database_url: str) -> None:
    url = make_url(database_url)
    if not url.drivername.startswith("sqlite") or not url.database:
        return
    path = Path(url.database)
    if path.exists():
        path.unlink()


@pytest.fixture(scope="session", autouse=True)
def _prepare_test_database() -> None:
    _ensure_database_exists(TEST_DATABASE_URL)
    _reset_sqlite_file(TEST_DATABASE_URL)

    env = os.environ.copy()
    env["DATABASE_URL"] = TEST_DATABASE_URL

    subprocess.run(
        ["alembic", "upgrade", "head"],
        check=True,
        cwd=REPO_ROOT,
        env=env,
    )

    database.configure_database()


def _clear_tables() -> None:
    with database.engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            # Immutability triggers block row deletes; TRUNCATE bypasses them.
            rows = conn.execute(
                text(
                    """
                    SELECT tablename
                    FROM pg_tables
                    WHERE schemaname = 'public'
                      AND tablename <> 'alembic_version'
                    """
                )
            ).fetchall()

            table_names = [row[0] for row in rows]
            if table_names:
                quoted = ", ".join([f'"public"."{name}"' for name in table_names])
                conn.execute(text(f"TRUNCATE TABLE {quoted} RESTART IDENTITY CASCADE"))
            return

        for table in reversed(database.Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="function", autouse=True)
def _truncate_tables_between_tests():
    _clear_tables()
    yield
    _clear_tables()


@pytest.fixture
def job_factory():
    def _make(
        company_id: int = 1,
        *,
        center_lat: float = SITE_LAT,
        center_lng: float = SITE_LNG,
        radius_m=100.0,
        is_active: bool = True,
        name: str = "Job",
    ) -> Job:
        db = SessionLocal()
        try:
            job = Job(
                company_id=company_id,
                name=name,
                center_lat=center_lat,
                center_lng=center_lng,
                radius_m=radius_m,
                is_active=is_active,
            )
            db.add(job)
            db.commit()
            db.refresh(job)
            return job
        finally:
            db.close()

    return _make


@pytest.fixture
def assignment_factory():
    def _make(
        company_id: int,
        job_id: int,
        worker_id: str,
        *,
        active: bool = True,
        starts_at=None,
        ends_at=None,
    ) -> JobAssignment:
        db = SessionLocal()
        try:
            assignment = JobAssignment(
                company_id=company_id,
                job_id=job_id,
                worker_id=str(worker_id),
                active=active,
                starts_at=starts_at,
                ends_at=ends_at,
            )
            db.add(assignment)
            db.commit()
            db.refresh(assignment)
            return assignment
        finally:
            db.close()

    return _make


@pytest.fixture
def assigned_job(job_factory, assignment_factory):
    """Job at the shared site with `worker_id` assigned to it."""

    def _make(company_id: int, worker_id: str, **job_kwargs) -> Job:
        job = job_factory(company_id, **job_kwargs)
        assignment_factory(company_id, job.id, worker_id)
        return job

    return _make


@pytest.fixture
def entry_factory():
    def _make(
        company_id: int,
        worker_id: str,
        job_id: int,
        clock_in_at: datetime,
        clock_out_at=None,
        *,
        approved: bool = False,
        invoice_id=None,
        exception_tags=None,
    ) -> TimeEntry:
        db = SessionLocal()
        try:
            entry = TimeEntry(
                time_entry_id=str(uuid4()),
                company_id=company_id,
                worker_id=str(worker_id),
                job_id=job_id,
                clock_in_at=clock_in_at,
                clock_out_at=clock_out_at,
                geo_ok_in=True,
                geo_ok_out=True if clock_out_at is not None else None,
                exception_tags=list(exception_tags or []),
                approved=approved,
                invoice_id=invoice_id,
                version=1,
                clock_in_event_id=f"in-{uuid4()}",
                clock_out_event_id=f"out-{uuid4()}" if clock_out_at is not None else None,
            )
            db.add(entry)
            db.commit()
            db.refresh(entry)
            return entry
        finally:
            db.close()

    return _make
