from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ.setdefault("TRIAL_LENGTH_DAYS", "30")
os.environ.setdefault("GRACE_PERIOD_DAYS", "7")

from schooldb.database import Base  # noqa: E402
from schooldb.apps.schools import models as school_models  # noqa: E402
from schooldb.apps.roster import models as roster_models  # noqa: E402
from schooldb.apps.roster import services as roster_services  # noqa: E402,F401  (registers counters)
from schooldb.apps.subscriptions import models as subscription_models  # noqa: E402
from schooldb.apps.apikeys import models as apikey_models  # noqa: E402


@pytest.fixture()
def db_engine():
    # One shared connection so background tasks and TestClient threads see
    # the same in-memory database.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(
        bind=engine,
        tables=[
            school_models.School.__table__,
            school_models.User.__table__,
            roster_models.SchoolClass.__table__,
            roster_models.Pupil.__table__,
            subscription_models.PaymentOrder.__table__,
            subscription_models.BillingAuditLog.__table__,
            apikey_models.ApiKey.__table__,
        ],
    )
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return sessionmaker(
        bind=db_engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
