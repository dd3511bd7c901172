import uvicorn

from .config import get_settings
from .main import create_app, setup_logging
from .server import SketchboardServer


def main():
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    app = create_app(settings)
    config = uvicorn.Config(
        app,
        host=settings.API_HOST,
        port=settings.API_PORT,
        timeout_graceful_shutdown=settings.SHUTDOWN_GRACE_SECONDS,
    )
    SketchboardServer(config, app.state.registry).run()


if __name__ == "__main__":
    main()
