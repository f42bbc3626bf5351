"""FastAPI application for the agent studio."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import __version__
from app.api.endpoints import register_exception_handlers, router
from app.services.sandbox import get_sandbox_runtime
from app.utils.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)

TAGS_METADATA = [
    {
        "name": "Conversation",
        "description": (
            "Send messages to a project's agents and stream the turn as NDJSON events. "
            "Mention an agent with '@' to address it directly."
        ),
    },
    {"name": "Projects", "description": "Create and list projects."},
    {"name": "Files", "description": "Read and edit project files."},
    {"name": "Versions", "description": "File snapshots recorded after turns that changed files."},
    {"name": "Sandbox", "description": "Output of commands and the preview server."},
    {"name": "Agents", "description": "The agent team and mention suggestions."},
    {"name": "Health", "description": "Service health and version."},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Tear the sandbox down on shutdown; it boots lazily on first use."""
    logger.info(f"Agent Studio {__version__} starting")
    yield
    logger.info("Shutting down, stopping the sandbox")
    await get_sandbox_runtime().teardown()


app = FastAPI(
    title="Agent Studio",
    description=(
        "A conversational service where a team of LLM-backed agents builds, edits and "
        "previews a small software project, delegating work from a team leader to specialists."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=TAGS_METADATA,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
register_exception_handlers(app)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), log_level="info")
