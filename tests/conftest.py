from __future__ import annotations

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from entitlements import db
from entitlements.log import configure_logging
from entitlements.main import app
from entitlements.models import CatalogModel, Character, Plan


def seed_reference_data() -> None:
    with db.SessionLocal() as session:
        session.add_all(
            [
                Plan(id="free", name="Free"),
                Plan(id="pro", name="Pro"),
                Character(id="char-1", name="Ada", is_active=True),
                Character(id="char-2", name="Grace", is_active=True),
                Character(id="char-3", name="Retired", is_active=False),
                Character(id="char-4", name="Linus", is_active=True),
                CatalogModel(
                    model_id="gpt-x",
                    name="GPT X",
                    is_active=True,
                    pricing_input=Decimal("0.001000"),
                    pricing_output=Decimal("0.002000"),
                ),
            ]
        )
        session.commit()


@pytest.fixture(scope="session", autouse=True)
def structured_logging() -> None:
    # Module loggers cache their processor chain on first use
    configure_logging(log_level="INFO", json_logs=False)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("ADMIN_TOKEN", "CATEGORY_DELETE_POLICY", "SYNC_TTL_SECONDS", "LOG_JSON", "LOG_SQL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def database(tmp_path) -> None:
    db.reset_engine(f"sqlite:///{tmp_path}/test.db")
    db.init_db()
    seed_reference_data()


@pytest.fixture()
def session(database):
    session: Session = db.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(database):
    app.state.catalog_syncer = None
    with TestClient(app) as test_client:
        yield test_client
    app.state.catalog_syncer = None
