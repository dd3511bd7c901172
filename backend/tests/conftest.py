import asyncio

import pytest
from fastapi.testclient import TestClient

from sketchboard.config import Settings
from sketchboard.database import create_db_engine, create_session_factory, init_db
from sketchboard.main import create_app


class FakeRequest:
    """Stands in for a Starlette request in stream generator tests."""

    def __init__(self):
        self.disconnected = False

    async def is_disconnected(self):
        return self.disconnected


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def settings(tmp_path):
    static_dir = tmp_path / "static"
    static_dir.mkdir()
    (static_dir / "submitSketch.js").write_text("export {};\n")
    (static_dir / "board.css").write_text("body { margin: 0; }\n")
    index_path = tmp_path / "index.html"
    index_path.write_text("<!DOCTYPE html><title>Sketchboard</title>")

    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'sketchboard.db'}",
        STATIC_DIR=static_dir,
        INDEX_PATH=index_path,
        SSE_QUEUE_SIZE=10,
        SSE_KEEPALIVE_SECONDS=0.05,
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def registry(app):
    return app.state.registry


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def db_session():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    session = create_session_factory(engine)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def fake_request():
    return FakeRequest()
