"""Main FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from crm_assistant import __version__
from crm_assistant.api.endpoints import router
from crm_assistant.services.chat import get_chat_service
from crm_assistant.services.sql_store import SqlMessageStore
from crm_assistant.utils.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = get_chat_service()
    if isinstance(service.store, SqlMessageStore):
        await service.store.init_models()
    logger.info(f"CRM assistant {__version__} started (AI configured: {service.client.is_configured})")
    logger.info(f"Registered tools: {', '.join(service.orchestrator.registry.get_tool_names())}")

    yield

    await service.wait_for_background_tasks()
    if isinstance(service.store, SqlMessageStore):
        await service.store.close()
    await service.client.aclose()


# Create FastAPI application
app = FastAPI(
    title="CRM Assistant",
    description=(
        "A conversational AI service that reads and edits CRM data through tools, "
        "pausing for human approval before any change."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    tags_metadata=[
        {
            "name": "Chat",
            "description": (
                "Stream assistant turns as server-sent events. Creating, updating and deleting data "
                "pauses the turn until the tool call is approved or rejected."
            ),
        },
        {
            "name": "Conversations",
            "description": "Create, list, rename and delete conversations.",
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("crm_assistant.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
