import pathlib
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

import pytest
from fastapi import FastAPI, Request
from sqlalchemy.orm import Session, sessionmaker

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from cardstock import procedures
from cardstock.app_logging import init_logging
from cardstock.config import reset_settings_cache
from cardstock.core.principal import Principal
from cardstock.core.tenancy import ensure_profile
from cardstock.models import Base, Membership, Role
from cardstock.models.session import get_engine
from cardstock.security import create_access_token, reset_jwt_settings_cache


@dataclass
class CoreContext:
    engine: object
    session_factory: sessionmaker[Session]
    principals: dict[str, Principal] = field(default_factory=dict)

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self.session_factory()
        try:
            yield session
        finally:
            session.close()

    def principal(self, name: str, email: str | None = None) -> Principal:
        """Register a principal (and its profile) under ``name``."""

        if name in self.principals:
            return self.principals[name]
        principal = Principal(id=uuid.uuid4(), email=email or f"{name}@moodycards.com")
        with self.session_factory.begin() as session:
            ensure_profile(session, principal)
        self.principals[name] = principal
        return principal

    def store(self, owner: str, slug: str = "moody-cards", name: str = "Moody Cards") -> uuid.UUID:
        """Create an organization owned by ``owner`` through the regular procedure."""

        principal = self.principal(owner)
        with self.session() as session:
            return procedures.create_organization(session, principal, name, slug).id

    def add_member(self, organization_id: uuid.UUID, name: str, role: Role = Role.MEMBER) -> uuid.UUID:
        """Insert a membership directly, bypassing invites."""

        principal = self.principal(name)
        with self.session_factory.begin() as session:
            membership = Membership(
                user_id=principal.id, organization_id=organization_id, role=role
            )
            session.add(membership)
            session.flush()
            return membership.id

    def header(self, name: str) -> dict[str, str]:
        principal = self.principals[name]
        token, _ = create_access_token(principal.id, principal.email)
        return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app


@pytest.fixture
def token_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("AUTH_TOKEN_SECRET", "cardstock-test-signing-key-0123456789")
    monkeypatch.setenv("AUTH_TOKEN_AUDIENCE", "cardstock")
    monkeypatch.setenv("AUTH_TOKEN_ISSUER", "auth.cardstock")
    monkeypatch.setenv("AUTH_TOKEN_ALGORITHM", "HS256")
    reset_jwt_settings_cache()
    yield
    reset_jwt_settings_cache()


@pytest.fixture
def core(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory) -> CoreContext:
    db_path = tmp_path_factory.mktemp("cardstock") / "core.db"
    db_url = f"sqlite+pysqlite:///{db_path}"
    monkeypatch.setenv("DATABASE_URL", db_url)
    reset_settings_cache()

    engine = get_engine(db_url)
    Base.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)

    yield CoreContext(engine=engine, session_factory=session_factory)

    Base.metadata.drop_all(engine)
    engine.dispose()
    reset_settings_cache()
