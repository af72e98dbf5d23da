"""sessionkit FastAPI application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sessionkit import config
from sessionkit.observability import initialize as initialize_observability, shutdown as shutdown_observability
from sessionkit.routers import cleanup_router, sessions_router
from sessionkit.store import SessionStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("sessionkit")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("sessionkit starting up (sessions=%s todos=%s)", config.SESSIONS_DIR, config.TODOS_DIR)
    initialize_observability(app)
    if getattr(app.state, "session_store", None) is None:
        app.state.session_store = SessionStore.from_config()

    yield

    logger.info("sessionkit shutting down")
    shutdown_observability(app)


app = FastAPI(
    title="sessionkit API",
    description="Maintenance API for Claude Code session logs",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router)
app.include_router(cleanup_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    store = getattr(app.state, "session_store", None)
    return {
        "status": "ok",
        "sessionsDir": str(store.sessions_dir) if store else None,
        "sessionsDirExists": bool(store and store.sessions_dir.is_dir()),
    }


def run() -> None:
    import uvicorn

    uvicorn.run("sessionkit.main:app", host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
