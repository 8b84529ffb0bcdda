"""API endpoints for the CRM assistant service."""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import StreamingResponse

from crm_assistant import __version__
from crm_assistant.errors import ChatError, ConversationNotFoundError, PendingConfirmationError
from crm_assistant.models.conversation import (
    ChatCompletionRequest,
    ConversationCreate,
    ConversationDetail,
    ConversationUpdate,
    DeletedResponse,
    HealthResponse,
    ToolConfirmRequest,
)
from crm_assistant.models.messages import Conversation
from crm_assistant.services.chat import ChatService, get_chat_service
from crm_assistant.tools import ToolContext
from crm_assistant.utils.logging import get_logger
from crm_assistant.utils.sse import sse_stream

logger = get_logger(__name__)

router = APIRouter()

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}


def get_caller(
    workspace_id: Annotated[str, Header(alias="X-Workspace-ID", min_length=1)],
    user_id: Annotated[str, Header(alias="X-User-ID", min_length=1)],
) -> ToolContext:
    """Caller scope from the identity headers."""
    return ToolContext(workspace_id=workspace_id, user_id=user_id)


Caller = Annotated[ToolContext, Depends(get_caller)]
Service = Annotated[ChatService, Depends(get_chat_service)]


def http_error(e: ChatError) -> HTTPException:
    """Map a request-level chat error to an HTTP error."""
    if isinstance(e, ConversationNotFoundError):
        status_code = 404
    elif isinstance(e, PendingConfirmationError):
        status_code = 409
    else:
        status_code = 400
    logger.warning(f"Request rejected ({status_code}): {e}")
    return HTTPException(status_code=status_code, detail=str(e))


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )


@router.get("/api/v1/chat/conversations", response_model=list[Conversation], tags=["Conversations"])
async def list_conversations(caller: Caller, service: Service) -> list[Conversation]:
    """List the caller's conversations, most recently active first."""
    return await service.list_conversations(caller)


@router.post("/api/v1/chat/conversations", response_model=Conversation, status_code=201, tags=["Conversations"])
async def create_conversation(request: ConversationCreate, caller: Caller, service: Service) -> Conversation:
    """Create a conversation."""
    return await service.create_conversation(caller, title=request.title, model=request.model)


@router.get("/api/v1/chat/conversations/{conversation_id}", response_model=ConversationDetail, tags=["Conversations"])
async def get_conversation(conversation_id: str, caller: Caller, service: Service) -> ConversationDetail:
    """Get a conversation with its messages."""
    try:
        return await service.get_conversation(conversation_id, caller)
    except ChatError as e:
        raise http_error(e) from e


@router.patch("/api/v1/chat/conversations/{conversation_id}", response_model=Conversation, tags=["Conversations"])
async def update_conversation(
    conversation_id: str, request: ConversationUpdate, caller: Caller, service: Service
) -> Conversation:
    """Rename a conversation or switch its model."""
    try:
        return await service.update_conversation(conversation_id, caller, title=request.title, model=request.model)
    except ChatError as e:
        raise http_error(e) from e


@router.delete("/api/v1/chat/conversations/{conversation_id}", response_model=DeletedResponse, tags=["Conversations"])
async def delete_conversation(conversation_id: str, caller: Caller, service: Service) -> DeletedResponse:
    """Delete a conversation and its messages."""
    try:
        await service.delete_conversation(conversation_id, caller)
    except ChatError as e:
        raise http_error(e) from e
    return DeletedResponse()


@router.post("/api/v1/chat/completions", tags=["Chat"])
async def chat_completion(request: ChatCompletionRequest, caller: Caller, service: Service) -> StreamingResponse:
    """Send a user message and stream the assistant's turn as server-sent events."""
    try:
        events = await service.start_turn(request.conversation_id, request.message, caller)
    except ChatError as e:
        raise http_error(e) from e

    return StreamingResponse(sse_stream(events), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/api/v1/chat/tool-confirm", tags=["Chat"])
async def confirm_tool_call(request: ToolConfirmRequest, caller: Caller, service: Service) -> StreamingResponse:
    """Approve or reject a paused tool call and stream the resumed turn."""
    try:
        events = await service.confirm_tool_call(
            request.conversation_id, request.message_id, request.tool_call_id, request.approved, caller
        )
    except ChatError as e:
        raise http_error(e) from e

    return StreamingResponse(sse_stream(events), media_type="text/event-stream", headers=SSE_HEADERS)
