"""
Chat-related API routes.
Handles conversation turns and thread management.
"""
from fastapi import APIRouter, Depends

from ..dependencies import Services, get_orchestrator, get_owner_id, get_services
from ..schemas import ChatBody, ChatResponse
from ..services.conversation_service import ConversationOrchestrator
from ..utils.helpers import dedupe_sources, serialize_message

router = APIRouter(prefix="/api", tags=["chat"])


@router.post("/chat", response_model=ChatResponse)
def chat(
    payload: ChatBody,
    owner_id: str = Depends(get_owner_id),
    services: Services = Depends(get_services),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    """
    Send a message and get the whole thread back.

    Workflow:
    1. Create the thread, or check the supplied one belongs to the caller
    2. Store the user message
    3. Retrieve relevant file chunks
    4. Build the prompt (file-grounded or general knowledge) and call the model
    5. Store the assistant message and refresh the thread summary
    """
    completion = services.completion_for(payload.model)
    result = orchestrator.handle_turn(
        owner_id,
        payload.message,
        thread_id=payload.thread_id,
        completion=completion,
    )
    return {
        "ok": True,
        "thread_id": result.thread_id,
        "mode": result.mode.value,
        "messages": [serialize_message(m) for m in result.messages],
        "sources": dedupe_sources(result.sources),
    }


@router.get("/chat")
def list_threads(
    owner_id: str = Depends(get_owner_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    """All of the caller's threads, newest first."""
    return {"ok": True, "threads": orchestrator.list_threads(owner_id)}


@router.get("/chat/{thread_id}")
def get_thread(
    thread_id: int,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    """
    Retrieve all messages from a thread.
    Returns messages in chronological order.
    """
    data = orchestrator.get_thread(owner_id, thread_id)
    thread, summary = data["thread"], data["summary"]
    return {
        "ok": True,
        "thread": {"id": thread.id, "title": thread.title, "created_at": thread.created_at},
        "messages": [serialize_message(m) for m in data["messages"]],
        "summary": None if summary is None else {
            "short": summary.short_summary,
            "long": summary.long_summary,
            "updated_at": summary.updated_at,
        },
    }


@router.delete("/chat/{thread_id}")
def delete_thread(
    thread_id: int,
    owner_id: str = Depends(get_owner_id),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    """Delete a thread with its messages and summary."""
    orchestrator.delete_thread(owner_id, thread_id)
    return {"ok": True, "deleted": thread_id}
