import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from videoguard.config import Settings, settings as default_settings
from videoguard.database import Database
from videoguard.routers import video
from videoguard.services.audit import AuditLogger
from videoguard.services.enrollments import EnrollmentStore
from videoguard.services.errors import VideoAccessError
from videoguard.services.guard import VideoSessionGuard
from videoguard.services.sessions import VideoSessionStore
from videoguard.services.views import VideoViewStore

LOGGER = logging.getLogger(__name__)


async def handle_video_access_error(request: Request, exc: VideoAccessError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(
    settings: Settings | None = None,
    database: Database | None = None,
    guard: VideoSessionGuard | None = None,
) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    database = database or Database(settings.database_url)
    if guard is None:
        guard = VideoSessionGuard(
            store=VideoSessionStore(database),
            views=VideoViewStore(database),
            audit=AuditLogger(database),
            settings=settings,
        )

    app = FastAPI(title="Video Session Guard")
    app.state.settings = settings
    app.state.database = database
    app.state.guard = guard
    app.state.enrollments = EnrollmentStore(database)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(VideoAccessError, handle_video_access_error)
    app.include_router(video.router, prefix="/api")

    @app.on_event("startup")
    def startup() -> None:
        database.init_db()
        if settings.cleanup_on_startup:
            try:
                guard.expire_stale_sessions()
            except VideoAccessError:
                LOGGER.warning("Skipping stale video session cleanup")

    @app.get("/")
    def root():
        return {"status": "Backend running"}

    return app


app = create_app()
