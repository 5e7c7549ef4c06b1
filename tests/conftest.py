import pytest
from httpx import ASGITransport, AsyncClient

from stoat.api.app import create_app
from stoat.db.engine import get_engine
from stoat.db.models import Base


def _reset_config():
    """Reset the in-memory config singleton to defaults."""
    import stoat.config as _cfg
    _cfg._db_values.clear()
    _cfg._reload_all()


@pytest.fixture()
def app(tmp_path):
    # File-backed so every pooled connection (and the TestClient loop) sees the same data
    return create_app(f"sqlite+aiosqlite:///{tmp_path / 'stoat.db'}")


@pytest.fixture()
def repo(app):
    return app.state.repo


@pytest.fixture()
async def db(app):
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await app.state.bus.close()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(autouse=True)
def _clear_state():
    _reset_config()
    yield
    _reset_config()


@pytest.fixture()
async def client(app, db):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c


@pytest.fixture()
def make_user(db):
    """Create a user directly; returns its id."""
    from stoat.auth.service import create_user
    from stoat.db.engine import get_session_factory

    async def _make(username: str) -> int:
        async with get_session_factory()() as session:
            user, _token = await create_user(session, username, "password123")
            await session.commit()
            return user.id

    return _make


class Recorder:
    """Bus handler that keeps every event it is given."""

    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)

    def kinds(self):
        return [(e.entity_kind, e.operation) for e in self.events]


@pytest.fixture()
def recorder(repo):
    rec = Recorder()
    repo.bus.attach(rec)
    return rec
