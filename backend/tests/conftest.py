from __future__ import annotations

import os
import uuid
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlmodel import Session, SQLModel, create_engine

from app.api.deps import get_db
from app.core.config import settings
from app.db import session as db_session_module
from app.db.session import get_session
from app.main import app
from app.models.billing import Plan, Subscription
from app.models.tenant import Tenant
from app.services.plan_catalog import PlanRepository

pytestmark = pytest.mark.anyio

ADMIN_TOKEN = "test-admin-token"
NOW = datetime(2026, 3, 11, 12, 0, 0)


@pytest.fixture()
def db_engine(tmp_path):
    test_database_url = os.getenv("TEST_DATABASE_URL")
    if not test_database_url:
        db_path = tmp_path / f"test_{uuid.uuid4().hex}.db"
        test_database_url = f"sqlite:///{db_path}"

    is_postgres = test_database_url.startswith("postgresql")

    admin_engine = None
    schema_name = None

    if is_postgres:
        url = make_url(test_database_url)
        schema_name = f"test_{uuid.uuid4().hex}"
        admin_engine = create_engine(url, future=True)
        with admin_engine.connect() as conn:
            conn.execution_options(isolation_level="AUTOCOMMIT").execute(
                text(f'CREATE SCHEMA IF NOT EXISTS "{schema_name}"')
            )
        client_encoding = os.getenv("POSTGRES_CLIENT_ENCODING", "UTF8")
        connect_args = {"options": f"-csearch_path={schema_name},public -cclient_encoding={client_encoding}"}
        engine = create_engine(test_database_url, connect_args=connect_args, future=True)
    else:
        engine = create_engine(test_database_url, connect_args={"check_same_thread": False})

    SQLModel.metadata.create_all(bind=engine)

    original_engine = db_session_module.engine
    original_get_session = db_session_module.get_session

    db_session_module.engine = engine

    def _get_session():
        with Session(engine) as session:
            yield session

    db_session_module.get_session = _get_session

    def override_dependency():
        yield from _get_session()

    app.dependency_overrides[get_session] = override_dependency
    app.dependency_overrides[get_db] = override_dependency

    yield engine

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_session, None)
    db_session_module.get_session = original_get_session
    db_session_module.engine = original_engine
    engine.dispose()
    if is_postgres and admin_engine and schema_name:
        with admin_engine.connect() as conn:
            conn.execution_options(isolation_level="AUTOCOMMIT").execute(
                text(f'DROP SCHEMA IF EXISTS "{schema_name}" CASCADE')
            )
        admin_engine.dispose()


@pytest.fixture()
def admin_token(monkeypatch) -> str:
    monkeypatch.setattr(settings, "admin_api_token", ADMIN_TOKEN)
    return ADMIN_TOKEN


@pytest.fixture()
def client(db_engine) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def db_session(db_engine) -> Session:
    with Session(db_engine) as session:
        yield session


@pytest.fixture()
def plans(db_session) -> dict[str, Plan]:
    """Default catalog keyed by plan code."""
    return {plan.code: plan for plan in PlanRepository(db_session).ensure_default_plans()}


def create_tenant(session: Session, name: str = "Inmobiliaria Test") -> Tenant:
    tenant = Tenant(name=name, slug=f"inmo-{uuid.uuid4().hex[:8]}")
    session.add(tenant)
    session.commit()
    session.refresh(tenant)
    return tenant


def create_subscription(
    session: Session,
    tenant: Tenant,
    plan: Plan,
    cycle_start: datetime,
    days: int = 30,
    seat_override: int | None = None,
    is_trial: bool = False,
) -> Subscription:
    subscription = Subscription(
        tenant_id=tenant.id,
        plan_id=plan.id,
        cycle_start=cycle_start,
        cycle_end=cycle_start + timedelta(days=days),
        seat_override=seat_override,
        is_trial=is_trial,
    )
    session.add(subscription)
    session.commit()
    session.refresh(subscription)
    return subscription


def tenant_headers(tenant: Tenant) -> dict[str, str]:
    return {"X-Tenant-ID": str(tenant.id)}


def admin_headers() -> dict[str, str]:
    return {"X-Admin-Token": ADMIN_TOKEN}
