import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from .broadcaster import BroadcastRegistry
from .config import Settings, get_settings
from .database import create_db_engine, create_session_factory, init_db
from .schemas import ErrorResponse, HealthResponse, Submission
from .store import KeyValueStore, StoreError, get_store
from .streaming import open_stream
from .submissions import (
    SKETCH_PREFIX,
    MonotonicClock,
    SubmissionError,
    new_submission,
    newest_first,
    parse_submission,
    sketch_key,
)

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=level.upper(),
        format="%(levelname)s:%(name)s:%(message)s",
    )


def get_registry(request: Request) -> BroadcastRegistry:
    return request.app.state.registry


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings: Settings = app.state.settings
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    yield

    # Shutdown
    closed = app.state.registry.close_all()
    logger.info(f"Shutting down, closed {closed} SSE connection(s)")
    app.state.engine.dispose()


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[BroadcastRegistry] = None,
) -> FastAPI:
    """
    Build the application with its own registry and database.

    Passing ``registry`` lets callers share or inspect the set of live
    connections; otherwise a fresh one is created.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    engine = create_db_engine(settings.DATABASE_URL)
    init_db(engine)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.registry = registry or BroadcastRegistry(queue_size=settings.SSE_QUEUE_SIZE)
    app.state.clock = MonotonicClock()

    @app.exception_handler(SubmissionError)
    async def submission_error_handler(request: Request, exc: SubmissionError):
        return JSONResponse(status_code=400, content={"error": exc.message})

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        return JSONResponse(status_code=500, content={"error": str(exc)})

    @app.post(
        "/submit",
        status_code=201,
        response_model=Submission,
        responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    async def submit(
        request: Request,
        store: KeyValueStore = Depends(get_store),
        registry: BroadcastRegistry = Depends(get_registry),
    ):
        """
        Save a sketch and push it to every connected viewer.
        """
        try:
            data = await request.json()
        except ValueError:
            raise SubmissionError("Invalid JSON body.")

        embed, creator = parse_submission(data)
        submission = new_submission(embed, creator, request.app.state.clock)
        store.put(sketch_key(submission.id), submission.model_dump())

        # Broadcast to live subscribers
        delivered = registry.broadcast(submission.model_dump_json())

        logger.info(f"Sketch created: id={submission.id} delivered={delivered}")
        return submission

    @app.get("/sketches", response_model=List[Submission])
    async def list_sketches(store: KeyValueStore = Depends(get_store)):
        """
        All stored sketches, newest first.
        """
        return newest_first(store.list(SKETCH_PREFIX))

    @app.get("/events")
    async def events(request: Request, registry: BroadcastRegistry = Depends(get_registry)):
        """
        SSE endpoint: streams every sketch created while the client stays connected.
        """
        return open_stream(request, registry, keepalive=settings.SSE_KEEPALIVE_SECONDS)

    @app.get("/health", response_model=HealthResponse)
    async def health(registry: BroadcastRegistry = Depends(get_registry)):
        return {
            "status": "healthy",
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "connections": len(registry),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/", include_in_schema=False)
    async def index():
        if not settings.INDEX_PATH.is_file():
            return PlainTextResponse("Not Found", status_code=404)
        return FileResponse(settings.INDEX_PATH, media_type="text/html")

    if settings.STATIC_DIR.is_dir():
        app.mount("/static", StaticFiles(directory=settings.STATIC_DIR), name="static")
    else:
        logger.warning(f"Static directory {settings.STATIC_DIR} not found, /static/ will return 404")

    return app
