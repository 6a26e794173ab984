"""
Agent Server - verified booking assistant.
Main FastAPI application: chat turns, long-term memory review and sessions.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .config import settings
from .agent.driver import ConversationDriver
from .integration.sheets import GoogleSheetsIntegration, TabularStore, configured_sheets
from .llm import ChatModel, OllamaChatModel
from .memory import (
    ConversationContextBuilder,
    ConversationStore,
    KeywordKnowledgeIndex,
    MemoryStore,
    NoteRepository,
    PlanStore,
    RecordNotFoundError,
    RequestAlreadyProcessedError,
    RequestNotFoundError,
    SqliteRecordRepository,
)
from .orchestrator import AgentOrchestrator, InMemoryExecutionLog, ToolExecutor

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.FileHandler(settings.log_file) if settings.log_file else logging.StreamHandler(),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# Global component instances
chat_model: Optional[ChatModel] = None
sheets_store: Optional[TabularStore] = None
conversation_store: Optional[ConversationStore] = None
record_repository: Optional[SqliteRecordRepository] = None
note_repository: Optional[NoteRepository] = None
knowledge_index: Optional[KeywordKnowledgeIndex] = None
plan_store: Optional[PlanStore] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    global chat_model, sheets_store, conversation_store, record_repository
    global note_repository, knowledge_index, plan_store

    logger.info("Starting Agent Server...")

    try:
        chat_model = OllamaChatModel.from_settings()
        logger.info(f"Chat model initialized: {settings.agent_model}")
    except Exception as exc:
        logger.error(f"Failed to initialize chat model: {exc}", exc_info=True)
        chat_model = None

    sheets_store = GoogleSheetsIntegration()
    if settings.google_sheets and await sheets_store.health_check():
        logger.info("Google Sheets API reachable")
    elif settings.google_sheets:
        logger.warning("Google Sheets API unreachable - booking tools will fail")

    try:
        conversation_store = ConversationStore(db_path=settings.database_path)
        record_repository = SqliteRecordRepository(settings.database_path)
        note_repository = NoteRepository(settings.database_path)
        knowledge_index = KeywordKnowledgeIndex(settings.database_path)
        plan_store = PlanStore(settings.database_path)
        logger.info(f"Storage initialized at {settings.database_path}")

        cleaned = conversation_store.cleanup_expired(timeout_minutes=settings.session_timeout_minutes)
        if cleaned > 0:
            logger.info(f"Cleaned up {cleaned} expired sessions on startup")
    except Exception as exc:
        logger.error(f"Failed to initialize storage: {exc}", exc_info=True)
        conversation_store = None
        record_repository = None

    yield

    logger.info("Shutting down Agent Server...")
    if isinstance(sheets_store, GoogleSheetsIntegration):
        await sheets_store.close()


app = FastAPI(
    title="Agent Server",
    description="Booking assistant with verified tool execution and human-approved memory",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ChatRequest(BaseModel):
    message: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None


class RecordCreate(BaseModel):
    title: str
    content: str


class ReviewRequest(BaseModel):
    reviewed_by: Optional[str] = None


def build_memory(tenant_id: str) -> MemoryStore:
    if not record_repository or not knowledge_index:
        raise HTTPException(status_code=503, detail="Memory store not available")
    return MemoryStore(tenant_id, record_repository, knowledge_index, model=chat_model)


def build_driver(tenant_id: str) -> ConversationDriver:
    """Wire the per-tenant components for one turn."""
    if not chat_model:
        raise HTTPException(status_code=503, detail="Chat model not available")
    if not note_repository or not plan_store:
        raise HTTPException(status_code=503, detail="Storage not available")
    memory = build_memory(tenant_id)
    executor = ToolExecutor(
        tenant_id,
        store=sheets_store,
        memory=memory,
        notes=note_repository,
        sheets=configured_sheets(),
    )
    # One log per turn
    orchestrator = AgentOrchestrator(tenant_id, executor, note_repository, log=InMemoryExecutionLog())
    context_builder = ConversationContextBuilder(
        memory,
        note_repository,
        history_window=settings.history_window,
        knowledge_chunks=settings.max_knowledge_chunks,
    )
    return ConversationDriver(
        tenant_id,
        chat_model,
        orchestrator,
        context_builder,
        plan_store,
        agent_name=settings.agent_name,
        max_tool_rounds=settings.max_tool_rounds,
        execution_log_window=settings.execution_log_window,
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Agent Server",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    sheets_healthy = await sheets_store.health_check() if sheets_store and settings.google_sheets else False
    healthy = chat_model is not None and conversation_store is not None
    return {
        "status": "healthy" if healthy else "degraded",
        "model": "loaded" if chat_model else "unavailable",
        "storage": "ready" if conversation_store else "unavailable",
        "sheets": "connected" if sheets_healthy else "disconnected",
    }


@app.post("/tenants/{tenant_id}/chat")
async def chat(tenant_id: str, request: ChatRequest):
    """
    Run one conversation turn.

    - Creates a session if none is given (or the given one is unknown).
    - Saves the user message and the assistant reply.
    - Returns the reply text with handoff / plan flags and the session_id.
    """
    if not conversation_store:
        raise HTTPException(status_code=503, detail="Session store not available")
    if not request.message.strip():
        raise HTTPException(status_code=400, detail="Message must not be empty")

    driver = build_driver(tenant_id)
    session_id = request.session_id
    meta = conversation_store.get_session(session_id) if session_id else None
    if meta is not None and meta.tenant_id != tenant_id:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    if meta is None:
        session_id = conversation_store.create_session(tenant_id, request.user_id)

    conversation_store.save_message(session_id, "user", request.message)
    history = conversation_store.get_history(session_id, limit=settings.session_history_limit)

    reply = await driver.run_turn(history, conversation_id=session_id, user_id=request.user_id)

    conversation_store.save_message(
        session_id,
        "assistant",
        reply.text,
        metadata={
            "request_handoff": reply.request_handoff,
            "plan_status": reply.plan_status,
            "executed_tools": reply.executed_tools,
        },
    )
    return {"session_id": session_id, **reply.model_dump()}


# Long-term memory review

@app.get("/tenants/{tenant_id}/records")
async def list_records(tenant_id: str):
    records = build_memory(tenant_id).list_records()
    return {"count": len(records), "records": [r.model_dump(mode="json") for r in records]}


@app.post("/tenants/{tenant_id}/records", status_code=201)
async def create_record(tenant_id: str, request: RecordCreate):
    try:
        record = build_memory(tenant_id).create_record(request.title, request.content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return record.model_dump(mode="json")


@app.post("/tenants/{tenant_id}/records/consolidate")
async def consolidate_records(tenant_id: str):
    """Stage merge proposals for duplicate records; nothing is applied until approved."""
    requests = await build_memory(tenant_id).consolidate()
    return {"count": len(requests), "requests": [r.model_dump(mode="json") for r in requests]}


@app.get("/tenants/{tenant_id}/records/{record_id}")
async def get_record(tenant_id: str, record_id: str):
    try:
        record = build_memory(tenant_id).get_record(record_id)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return record.model_dump(mode="json")


@app.get("/tenants/{tenant_id}/modification-requests")
async def list_modification_requests(tenant_id: str):
    """Pending requests awaiting review."""
    pending = build_memory(tenant_id).list_pending()
    return {"count": len(pending), "requests": [r.model_dump(mode="json") for r in pending]}


@app.post("/tenants/{tenant_id}/modification-requests/{request_id}/approve")
async def approve_modification_request(tenant_id: str, request_id: str, review: Optional[ReviewRequest] = None):
    try:
        request = build_memory(tenant_id).approve(request_id, review.reviewed_by if review else None)
    except (RequestNotFoundError, RecordNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except RequestAlreadyProcessedError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return request.model_dump(mode="json")


@app.post("/tenants/{tenant_id}/modification-requests/{request_id}/reject")
async def reject_modification_request(tenant_id: str, request_id: str, review: Optional[ReviewRequest] = None):
    try:
        request = build_memory(tenant_id).reject(request_id, review.reviewed_by if review else None)
    except RequestNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except RequestAlreadyProcessedError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return request.model_dump(mode="json")


# Session Management Endpoints

@app.get("/sessions/{session_id}")
async def get_session(session_id: str):
    """Session metadata and full message history."""
    if not conversation_store:
        raise HTTPException(status_code=503, detail="Session store not available")

    meta = conversation_store.get_session(session_id)
    if not meta:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")

    messages = conversation_store.get_history(session_id, limit=1000)
    return {
        "session": meta.to_dict(),
        "messages": [m.model_dump(mode="json") for m in messages]
    }


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    if not conversation_store:
        raise HTTPException(status_code=503, detail="Session store not available")

    if not conversation_store.delete_session(session_id):
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")

    return {"status": "success", "message": f"Session {session_id} deleted"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "agent_server.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload
    )
