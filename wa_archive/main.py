import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, Literal, Optional, Type, TypeVar

from fastapi import FastAPI, Response, Request, Depends, Header, HTTPException, status, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from wa_archive import ingest, queries
from wa_archive.config import settings
from wa_archive.errors import NotFoundError, StorageError
from wa_archive.storage import init_db, check_db_health, get_db, get_contacts_db
from wa_archive.logging_utils import setup_logging, RequestLoggingMiddleware, log_webhook_data
from wa_archive.utils import verify_hmac_signature
from wa_archive.metrics import record_webhook_outcome, get_metrics, get_metrics_content_type
from wa_archive.schemas import (
    ChatView,
    ContactView,
    ErrorResponse,
    HealthResponse,
    HistorySyncBatch,
    MediaDescriptor,
    MessageContext,
    MessageEvent,
    MessageView,
    WebhookResponse,
)


setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)

ArchiveDB = Annotated[Session, Depends(get_db)]
ContactsDB = Annotated[Optional[Session], Depends(get_contacts_db)]
Limit = Annotated[int, Query(ge=1, le=100, description="Page size")]
Page = Annotated[int, Query(ge=0, description="Zero-based page number")]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="WhatsApp Archive API",
    description="Local WhatsApp message archive with structured queries",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    """Map a missing chat, message or media descriptor to 404."""
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    """Map a database failure to 500 without leaking the driver error."""
    logger.error(f"Storage failure: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": f"storage failure during {exc.operation}"},
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. DB is reachable and schema is applied
    2. WEBHOOK_SECRET is set (non-empty)

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.WEBHOOK_SECRET:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="WEBHOOK_SECRET not configured")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="Database not reachable or schema not applied")

    return HealthResponse(status="ready")


# =============================================================================
# Ingestion Routes
# =============================================================================

async def _read_signed_payload(
    request: Request,
    x_signature: Optional[str],
    model: Type[PayloadT],
) -> PayloadT:
    """Verify the X-Signature HMAC of the raw body, then validate it against `model`."""
    raw_body = await request.body()
    logger.debug(f"Request body size: {len(raw_body)} bytes")

    if not x_signature or not verify_hmac_signature(raw_body, x_signature, settings.WEBHOOK_SECRET):
        logger.error("Missing or invalid X-Signature header")
        record_webhook_outcome("invalid_signature")
        log_webhook_data(request, result="invalid_signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid signature")

    try:
        return model.model_validate_json(raw_body)
    except ValidationError as e:
        logger.error(f"Validation error: {e}")
        record_webhook_outcome("validation_error")
        log_webhook_data(request, result="validation_error")
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@app.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        422: {"description": "Validation error"},
    }
)
async def webhook(
    request: Request,
    db: ArchiveDB,
    contacts_db: ContactsDB,
    x_signature: Annotated[Optional[str], Header(alias="X-Signature")] = None,
) -> WebhookResponse:
    """
    Ingest a live message event from the protocol client.

    The chat is always upserted; the message is skipped (not an error) when it
    has neither text nor media. Re-delivery of the same (id, chat_jid) replaces
    the stored row.
    """
    event = await _read_signed_payload(request, x_signature, MessageEvent)

    try:
        # Blocking database work runs in the threadpool, off the event loop
        stored = await run_in_threadpool(ingest.ingest_message_event, db, event, contacts_db)
    except StorageError:
        record_webhook_outcome("error")
        log_webhook_data(request, result="error", message_id=event.id, chat_jid=event.chat_jid)
        raise

    result = "stored" if stored else "skipped"
    record_webhook_outcome(result)
    log_webhook_data(
        request, result=result, message_id=event.id, chat_jid=event.chat_jid, stored=int(stored)
    )
    return WebhookResponse(status="ok", stored=int(stored))


@app.post(
    "/webhook/history",
    response_model=WebhookResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        422: {"description": "Validation error"},
    }
)
async def webhook_history(
    request: Request,
    db: ArchiveDB,
    contacts_db: ContactsDB,
    x_signature: Annotated[Optional[str], Header(alias="X-Signature")] = None,
) -> WebhookResponse:
    """
    Ingest a history-sync batch delivered by the protocol client.

    A batch can hold thousands of messages; it is stored in the threadpool so
    read routes keep being served meanwhile. Returns how many messages were stored.
    """
    batch = await _read_signed_payload(request, x_signature, HistorySyncBatch)

    try:
        synced = await run_in_threadpool(ingest.ingest_history_sync, db, batch, contacts_db)
    except StorageError:
        record_webhook_outcome("error")
        log_webhook_data(request, result="error")
        raise

    record_webhook_outcome("history_synced")
    log_webhook_data(request, result="history_synced", stored=synced)
    return WebhookResponse(status="ok", stored=synced)


# =============================================================================
# Message Routes
# =============================================================================

@app.get("/messages", response_model=list[MessageView], response_model_exclude_none=True)
def list_messages(
    db: ArchiveDB,
    contacts_db: ContactsDB,
    after: Annotated[Optional[datetime], Query(description="Only messages strictly after this time")] = None,
    before: Annotated[Optional[datetime], Query(description="Only messages strictly before this time")] = None,
    sender_phone_number: Annotated[Optional[str], Query(description="Exact sender identifier")] = None,
    chat_jid: Annotated[Optional[str], Query(description="Restrict to one chat")] = None,
    query: Annotated[Optional[str], Query(description="Substring of content or media type")] = None,
    limit: Limit = queries.DEFAULT_LIMIT,
    page: Page = 0,
    include_context: bool = True,
    context_before: Annotated[int, Query(ge=0, le=50)] = 1,
    context_after: Annotated[int, Query(ge=0, le=50)] = 1,
) -> list[MessageView]:
    """
    List messages newest first. With include_context, each match is followed by
    its neighbours; messages appearing in several windows are emitted once.
    """
    return queries.list_messages(
        db,
        contacts_db,
        after=after,
        before=before,
        sender_phone_number=sender_phone_number,
        chat_jid=chat_jid,
        query=query,
        limit=limit,
        page=page,
        include_context=include_context,
        context_before=context_before,
        context_after=context_after,
    )


@app.get(
    "/messages/{message_id}/context",
    response_model=MessageContext,
    response_model_exclude_none=True,
    responses={404: {"model": ErrorResponse}},
)
def get_message_context(
    message_id: str,
    db: ArchiveDB,
    contacts_db: ContactsDB,
    before: Annotated[int, Query(ge=0, le=50)] = 5,
    after: Annotated[int, Query(ge=0, le=50)] = 5,
) -> MessageContext:
    """Return a message with up to `before` earlier and `after` later messages from its chat."""
    return queries.get_message_context(db, message_id, contacts_db, before=before, after=after)


@app.get(
    "/media/{chat_jid}/{message_id}",
    response_model=MediaDescriptor,
    responses={404: {"model": ErrorResponse}},
)
def get_media_descriptor(chat_jid: str, message_id: str, db: ArchiveDB) -> MediaDescriptor:
    """Stored media descriptor; fetching and decrypting the bytes is up to the caller."""
    return ingest.get_media_descriptor(db, message_id, chat_jid)


# =============================================================================
# Chat Routes
# =============================================================================

@app.get("/chats", response_model=list[ChatView], response_model_exclude_none=True)
def list_chats(
    db: ArchiveDB,
    contacts_db: ContactsDB,
    query: Annotated[Optional[str], Query(description="Substring of chat name or JID")] = None,
    limit: Limit = queries.DEFAULT_LIMIT,
    page: Page = 0,
    include_last_message: bool = True,
    sort_by: Literal["last_active", "name"] = "last_active",
) -> list[ChatView]:
    """
    List chats, most recently active first (or by name with sort_by=name).
    Each chat carries its last message unless include_last_message is false.
    """
    return queries.list_chats(
        db,
        contacts_db,
        query=query,
        limit=limit,
        page=page,
        include_last_message=include_last_message,
        sort_by=sort_by,
    )


@app.get(
    "/chats/{chat_jid}",
    response_model=ChatView,
    response_model_exclude_none=True,
    responses={404: {"model": ErrorResponse}},
)
def get_chat(
    chat_jid: str,
    db: ArchiveDB,
    contacts_db: ContactsDB,
    include_last_message: bool = True,
) -> ChatView:
    """Get a single chat by JID. Returns 404 if it does not exist."""
    return queries.get_chat(db, chat_jid, contacts_db, include_last_message=include_last_message)


# =============================================================================
# Contact Routes
# =============================================================================

@app.get("/contacts", response_model=list[ContactView], response_model_exclude_none=True)
def search_contacts(
    db: ArchiveDB,
    query: Annotated[str, Query(description="Substring of contact name or phone number")],
) -> list[ContactView]:
    """Search direct-chat contacts by name or phone number (at most 50, groups excluded)."""
    return queries.search_contacts(db, query)


@app.get(
    "/contacts/{phone_number}/direct-chat",
    response_model=ChatView,
    response_model_exclude_none=True,
    responses={404: {"model": ErrorResponse}},
)
def get_direct_chat_by_contact(phone_number: str, db: ArchiveDB, contacts_db: ContactsDB) -> ChatView:
    """Find the direct (non-group) chat whose JID contains the phone number."""
    return queries.get_direct_chat_by_contact(db, phone_number, contacts_db)


@app.get("/contacts/{jid}/chats", response_model=list[ChatView], response_model_exclude_none=True)
def get_contact_chats(
    jid: str,
    db: ArchiveDB,
    contacts_db: ContactsDB,
    limit: Limit = queries.DEFAULT_LIMIT,
    page: Page = 0,
) -> list[ChatView]:
    """Chats keyed by the JID or in which it has sent at least one message."""
    return queries.get_contact_chats(db, jid, contacts_db, limit=limit, page=page)


@app.get(
    "/contacts/{jid}/last-interaction",
    response_model=MessageView,
    response_model_exclude_none=True,
    responses={404: {"model": ErrorResponse}},
)
def get_last_interaction(jid: str, db: ArchiveDB, contacts_db: ContactsDB) -> MessageView:
    """Most recent message sent by the JID or in its chat. Returns 404 if there is none."""
    return queries.get_last_interaction(db, jid, contacts_db)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())
