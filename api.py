"""
FastAPI HTTP Interface
======================
Exposes the research assistant agent over HTTP.

Endpoints:
  POST /invoke    → run one turn, return the final AI message
  POST /stream    → run one turn, stream message/token events (SSE)
  POST /feedback  → record feedback for a run
  POST /history   → persisted messages of a thread
  GET  /health    → liveness check

Run:
    uvicorn api:app --reload --port 8000

Example cURL flow:

    # 1. Ask something (a thread_id is generated when omitted)
    curl -X POST http://localhost:8000/invoke \\
         -H "Content-Type: application/json" \\
         -d '{"message": "What is 2+2?", "thread_id": "demo"}'

    # 2. Stream the next turn of the same thread
    curl -N -X POST http://localhost:8000/stream \\
         -H "Content-Type: application/json" \\
         -d '{"message": "And times 10?", "thread_id": "demo", "stream_tokens": true}'

    # 3. Read the thread back
    curl -X POST http://localhost:8000/history \\
         -H "Content-Type: application/json" \\
         -d '{"thread_id": "demo"}'
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse

from research_assistant import AssistantSession
from research_assistant.config import get_settings
from research_assistant.errors import ThreadNotFoundError
from research_assistant.schema import (
    ChatHistory,
    ChatHistoryInput,
    ChatMessage,
    Feedback,
    FeedbackResponse,
    StreamInput,
    UserInput,
)

logger = logging.getLogger(__name__)

_session: AssistantSession | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Start the MCP tool server subprocess and open the SQLite checkpointer on
    startup. Both are closed on shutdown via AssistantSession.stop().
    """
    global _session
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    missing = settings.missing()
    if missing:
        logger.warning("[api] Missing environment variables: %s", missing)

    _session = AssistantSession()
    await _session.start()
    yield
    await _session.stop()
    _session = None


app = FastAPI(
    title="Research Assistant Agent",
    description="Research assistant with web search, a calculator, and Llama Guard screening.",
    lifespan=lifespan,
)


def _require_session() -> AssistantSession:
    if _session is None or not _session.ready:
        raise HTTPException(status_code=503, detail="Agent not initialized.")
    return _session


# ── Endpoints ──────────────────────────────────────────────────────────────────

@app.post("/invoke", response_model=ChatMessage)
async def invoke(user_input: UserInput):
    """
    Run one turn to completion.

    Response: { type: "ai", content: "...", run_id: "..." }
    """
    session = _require_session()
    try:
        return await session.invoke(user_input)
    except Exception as exc:
        logger.exception("[api] /invoke failed")
        raise HTTPException(status_code=500, detail=str(exc))


@app.post("/stream")
async def stream(user_input: StreamInput):
    """
    Stream one turn as server-sent events, terminated by "data: [DONE]".
    Closing the connection cancels the turn at its next await.
    """
    session = _require_session()
    return StreamingResponse(session.stream(user_input), media_type="text/event-stream")


@app.post("/feedback", response_model=FeedbackResponse)
async def feedback(feedback: Feedback):
    session = _require_session()
    return await session.feedback(feedback)


@app.post("/history", response_model=ChatHistory)
async def history(input: ChatHistoryInput):
    """Persisted messages of a thread. 404 when the thread has never run."""
    session = _require_session()
    try:
        return await session.history(input.thread_id)
    except ThreadNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@app.get("/health")
async def health():
    return {"status": "ok", "agent_ready": _session is not None and _session.ready}
