"""
Clarity Service API
===================

FastAPI endpoints for conversation miscommunication analysis.

Conversations:
- POST   /api/conversations                    - Create (quota-checked), best-effort parse
- GET    /api/conversations                    - List own conversations, newest first
- GET    /api/conversations/{id}               - Get conversation
- POST   /api/conversations/{id}/analyze       - Run analysis (idempotent)
- GET    /api/conversations/{id}/analysis      - Get analysis
- POST   /api/conversations/{id}/reanalyze     - Analyze user-corrected messages
- POST   /api/conversations/{id}/share         - Create share link

Sharing:
- GET    /api/shared/{token}                   - Public read, counts a view
- DELETE /api/shared/{token}                   - Deactivate a link

Subscriptions:
- GET    /api/subscription/status
- POST   /api/subscription/create
- POST   /api/subscription/cancel
- GET    /api/subscription-plans

- GET    /health                               - Health check

Run with:
    uvicorn clarity_lite.api:app --host 0.0.0.0 --port 8000
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, Depends, Body, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .auth import AuthContext, get_current_user
from .billing import BillingClient, start_subscription, sync_subscription, cancel_user_subscription
from .config import Settings, get_settings
from .db.session import get_db, init_db
from .db.repository import (
    create_conversation as insert_conversation,
    get_conversation,
    list_conversations as query_conversations,
    get_analysis_for_conversation,
    list_active_plans,
    save_analysis,
    replace_analysis,
)
from .errors import ClarityError, NotFoundError, BillingError
from .llm_client import ModelClient, resolve_model
from .orchestrator import AnalysisOrchestrator
from .schemas import (
    CreateConversationRequest,
    CreateConversationResponse,
    ConversationOut,
    ConversationEnvelope,
    AnalysisOut,
    AnalysisEnvelope,
    AnalyzeResponse,
    ReanalyzeRequest,
    CreateShareRequest,
    ShareInfo,
    ShareLinkResponse,
    SharedAnalysisResponse,
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    SubscriptionPlanOut,
    SubscriptionStatusResponse,
    SubscriptionStatus,
    HealthResponse,
    ErrorResponse,
)
from .sharing import create_share_link, resolve_share_link, deactivate_share_link, share_path
from .usage import (
    check_and_maybe_reject, check_plan_options, track_usage,
    count_monthly_usage, monthly_limit, SOFT_LIMIT_PLANS,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Clarity Service",
    description="Detects miscommunications in conversations and suggests clearer phrasing",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid input"},
    404: {"model": ErrorResponse, "description": "Not found"},
    500: {"model": ErrorResponse, "description": "Internal error"},
}


# =============================================================================
# Service dependencies
# =============================================================================

def _ensure_services(app: FastAPI):
    """Create the process-wide clients once"""
    state = app.state
    if getattr(state, "model_client", None) is None:
        state.model_client = ModelClient(get_settings())
    if getattr(state, "orchestrator", None) is None:
        state.orchestrator = AnalysisOrchestrator(state.model_client, get_settings())
    if getattr(state, "billing_client", None) is None:
        state.billing_client = BillingClient(get_settings())


def get_model_client(request: Request) -> ModelClient:
    _ensure_services(request.app)
    return request.app.state.model_client


def get_orchestrator(request: Request) -> AnalysisOrchestrator:
    _ensure_services(request.app)
    return request.app.state.orchestrator


def get_billing_client(request: Request) -> BillingClient:
    _ensure_services(request.app)
    return request.app.state.billing_client


def _owned_conversation(db: Session, conversation_id: str, auth: AuthContext):
    conversation = get_conversation(db, conversation_id, user_id=auth.user_id)
    if conversation is None:
        raise NotFoundError("Conversation not found")
    return conversation


def _share_info(link) -> ShareInfo:
    return ShareInfo(
        token=link.token,
        view_count=link.view_count,
        is_active=link.is_active,
        created_at=link.created_at,
        expires_at=link.expires_at,
    )


def _subscription_status(db: Session, auth: AuthContext) -> SubscriptionStatusResponse:
    user = auth.user
    limit = monthly_limit(auth.plan)
    usage = count_monthly_usage(db, user.id)
    try:
        status = SubscriptionStatus(user.subscription_status)
    except ValueError:
        status = SubscriptionStatus.INACTIVE
    return SubscriptionStatusResponse(
        subscription_plan=auth.plan,
        subscription_status=status,
        monthly_limit=limit,
        monthly_usage=usage,
        remaining=max(limit - usage, 0),
        soft_limit=auth.plan in SOFT_LIMIT_PLANS,
        subscription_ends_at=user.subscription_ends_at,
    )


# =============================================================================
# Health
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(client: ModelClient = Depends(get_model_client)):
    """Health check endpoint"""
    settings = get_settings()
    return HealthResponse(
        status="healthy",
        version=settings.service_version,
        providers=client.configured_providers(),
        timestamp=datetime.now(),
    )


# =============================================================================
# Conversations
# =============================================================================

@app.post(
    "/api/conversations",
    status_code=201,
    response_model=CreateConversationResponse,
    tags=["Conversations"],
    responses={**ERROR_RESPONSES, 403: {"model": ErrorResponse, "description": "Quota reached or plan required"}},
)
async def create_conversation(
    payload: CreateConversationRequest,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
):
    """
    Store a conversation and attach a best-effort parse.

    The monthly quota is checked against usage events; one event is
    recorded per created conversation. Parse failures do not fail the request.
    """
    model = resolve_model(payload.ai_model, settings.default_model)
    check_plan_options(auth.plan, model, payload.reasoning_level)
    check_and_maybe_reject(db, auth.user_id, auth.plan)

    conversation = insert_conversation(
        db,
        user_id=auth.user_id,
        text=payload.text,
        image_urls=[payload.image_url] if payload.image_url else [],
        analysis_depth=payload.analysis_depth.value,
        language=payload.language,
        ai_model=model.value,
        reasoning_level=payload.reasoning_level.value,
    )
    track_usage(db, auth.user)
    db.commit()
    logger.info(f"Conversation {conversation.id} created by {auth.user_id} (model={model.value})")

    speakers = None
    messages = None
    try:
        transcript = await orchestrator.prepare_transcript(conversation)
        speakers, messages = transcript.speakers, transcript.messages
    except ClarityError as e:
        logger.warning(f"Best-effort parse failed for conversation {conversation.id}: {e.code}")

    return CreateConversationResponse(
        conversation=ConversationOut.model_validate(conversation),
        speakers=speakers,
        messages=messages,
    )


@app.get("/api/conversations", response_model=List[ConversationOut], tags=["Conversations"])
async def list_conversations(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    conversations = query_conversations(db, auth.user_id, limit=limit, offset=offset)
    return [ConversationOut.model_validate(c) for c in conversations]


@app.get(
    "/api/conversations/{conversation_id}",
    response_model=ConversationEnvelope,
    tags=["Conversations"],
    responses=ERROR_RESPONSES,
)
async def get_conversation_by_id(
    conversation_id: str,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    conversation = _owned_conversation(db, conversation_id, auth)
    return ConversationEnvelope(conversation=ConversationOut.model_validate(conversation))


@app.post(
    "/api/conversations/{conversation_id}/analyze",
    response_model=AnalyzeResponse,
    tags=["Analysis"],
    responses=ERROR_RESPONSES,
)
async def analyze_conversation(
    conversation_id: str,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """
    Run the full pipeline once per conversation.

    If an analysis already exists it is returned unchanged.
    """
    conversation = _owned_conversation(db, conversation_id, auth)

    async with orchestrator.locks.hold(conversation_id):
        existing = get_analysis_for_conversation(db, conversation_id)
        if existing is not None:
            return AnalyzeResponse(analysis=AnalysisOut.model_validate(existing), messages=existing.messages or [])

        result = await orchestrator.run(conversation)
        try:
            analysis = save_analysis(db, conversation_id, **result.to_record())
            db.commit()
        except IntegrityError:
            # Another process stored one first
            db.rollback()
            analysis = get_analysis_for_conversation(db, conversation_id)
            if analysis is None:
                raise
            return AnalyzeResponse(analysis=AnalysisOut.model_validate(analysis), messages=analysis.messages or [])

    return AnalyzeResponse(analysis=AnalysisOut.model_validate(analysis), messages=result.messages)


@app.get(
    "/api/conversations/{conversation_id}/analysis",
    response_model=AnalysisEnvelope,
    tags=["Analysis"],
    responses=ERROR_RESPONSES,
)
async def get_analysis(
    conversation_id: str,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _owned_conversation(db, conversation_id, auth)
    analysis = get_analysis_for_conversation(db, conversation_id)
    if analysis is None:
        raise NotFoundError("Analysis not found")
    return AnalysisEnvelope(analysis=AnalysisOut.model_validate(analysis))


@app.post(
    "/api/conversations/{conversation_id}/reanalyze",
    response_model=AnalyzeResponse,
    tags=["Analysis"],
    responses=ERROR_RESPONSES,
)
async def reanalyze_conversation(
    conversation_id: str,
    payload: ReanalyzeRequest,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """
    Analyze user-corrected speakers/messages (no extraction or parsing).

    The new analysis replaces the previous one in a single transaction, so
    exactly one row remains. Calls for the same conversation run one at a time.
    """
    conversation = _owned_conversation(db, conversation_id, auth)

    async with orchestrator.locks.hold(conversation_id):
        result = await orchestrator.reanalyze(conversation, payload.speakers, payload.messages)
        analysis = replace_analysis(db, conversation_id, **result.to_record())
        db.commit()

    logger.info(f"Conversation {conversation_id} re-analyzed ({len(result.messages)} messages)")
    return AnalyzeResponse(analysis=AnalysisOut.model_validate(analysis), messages=result.messages)


# =============================================================================
# Sharing
# =============================================================================

@app.post(
    "/api/conversations/{conversation_id}/share",
    status_code=201,
    response_model=ShareLinkResponse,
    tags=["Sharing"],
    responses=ERROR_RESPONSES,
)
async def share_conversation(
    conversation_id: str,
    payload: Optional[CreateShareRequest] = Body(None),
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    link = create_share_link(
        db,
        conversation_id,
        auth.user_id,
        expires_in_days=payload.expires_in_days if payload else None,
        default_days=settings.share_link_default_days,
    )
    db.commit()
    return ShareLinkResponse(share_info=_share_info(link), path=share_path(link.token))


@app.get(
    "/api/shared/{token}",
    response_model=SharedAnalysisResponse,
    tags=["Sharing"],
    responses=ERROR_RESPONSES,
)
async def get_shared_analysis(token: str, db: Session = Depends(get_db)):
    """Public: no authentication. Counts one view per successful resolve."""
    link, conversation, analysis = resolve_share_link(db, token)
    db.commit()
    return SharedAnalysisResponse(
        conversation=ConversationOut.model_validate(conversation),
        analysis=AnalysisOut.model_validate(analysis),
        share_info=_share_info(link),
    )


@app.delete(
    "/api/shared/{token}",
    response_model=ShareLinkResponse,
    tags=["Sharing"],
    responses=ERROR_RESPONSES,
)
async def deactivate_shared_analysis(
    token: str,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    link = deactivate_share_link(db, token, auth.user_id)
    db.commit()
    return ShareLinkResponse(share_info=_share_info(link), path=share_path(link.token))


# =============================================================================
# Subscriptions
# =============================================================================

@app.get("/api/subscription-plans", response_model=List[SubscriptionPlanOut], tags=["Subscriptions"])
async def list_subscription_plans(db: Session = Depends(get_db)):
    return [SubscriptionPlanOut.model_validate(p) for p in list_active_plans(db)]


@app.get("/api/subscription/status", response_model=SubscriptionStatusResponse, tags=["Subscriptions"])
async def subscription_status(
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    billing: BillingClient = Depends(get_billing_client),
):
    try:
        if await sync_subscription(db, billing, auth.user):
            db.commit()
    except BillingError as e:
        db.rollback()
        logger.warning(f"Subscription sync failed for {auth.user_id}: {e.code}")
    return _subscription_status(db, auth)


@app.post(
    "/api/subscription/create",
    response_model=CreateSubscriptionResponse,
    tags=["Subscriptions"],
    responses={**ERROR_RESPONSES, 502: {"model": ErrorResponse, "description": "Billing provider error"}},
)
async def create_subscription(
    payload: CreateSubscriptionRequest,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    billing: BillingClient = Depends(get_billing_client),
):
    result = await start_subscription(db, billing, auth.user, payload.plan_id)
    db.commit()
    return CreateSubscriptionResponse(**result)


@app.post(
    "/api/subscription/cancel",
    response_model=SubscriptionStatusResponse,
    tags=["Subscriptions"],
    responses={**ERROR_RESPONSES, 502: {"model": ErrorResponse, "description": "Billing provider error"}},
)
async def cancel_subscription(
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    billing: BillingClient = Depends(get_billing_client),
):
    await cancel_user_subscription(db, billing, auth.user)
    db.commit()
    return _subscription_status(db, auth)


# =============================================================================
# Startup / Shutdown
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize on startup"""
    settings = get_settings()
    logger.info(f"Starting Clarity Service v{settings.service_version}")
    for warning in settings.validate_llm_config():
        logger.warning(warning)
    logger.info(f"CORS allow origins: {settings.cors_origins()}")

    init_db()
    _ensure_services(app)


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    client = getattr(app.state, "model_client", None)
    if client is not None:
        await client.close()
    billing = getattr(app.state, "billing_client", None)
    if billing is not None:
        await billing.close()
    logger.info("Clarity Service stopped")


# =============================================================================
# Error handlers
# =============================================================================

@app.exception_handler(ClarityError)
async def clarity_error_handler(request: Request, exc: ClarityError):
    """Every domain failure renders as {message, error, ...}"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return structured validation errors without echoing inputs."""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid request data", "error": "validation_error", "errors": errors},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler - always return valid JSON"""
    logger.error("Unhandled exception on %s: %s", request.url.path, exc.__class__.__name__)
    return JSONResponse(
        status_code=500,
        content={"message": "Something went wrong. Please try again.", "error": "internal_error"},
    )


# =============================================================================
# Main (for direct execution)
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
