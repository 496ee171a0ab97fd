from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from school_sessions.api.v1.attendance.router import router as attendance_router
from school_sessions.api.v1.promotion.router import router as promotion_router
from school_sessions.api.v1.rollover.router import router as rollover_router
from school_sessions.api.v1.sessions.router import router as sessions_router
from school_sessions.core.config import configure_logging, settings


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="School Sessions")

    # CORS: allow frontend to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers. Rollover goes first: its literal /rollover-runs path must win over /{session_id}.
    app.include_router(rollover_router)
    app.include_router(sessions_router)
    app.include_router(promotion_router)
    app.include_router(attendance_router)

    return app


app = create_app()
