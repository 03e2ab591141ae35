"""FastAPI application for the ClearPath API.

Consumer routes serve recommendations and manage consent; operator routes
drive the review queue. Services are provided through dependency functions so
tests can swap them with app.dependency_overrides.
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from functools import lru_cache, partial
from typing import Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

# Load environment variables from .env file
load_dotenv()

from src.analytics.aggregators import compute_review_metrics
from src.api.auth import User, get_current_user, require_operator, require_user_access
from src.api.error_handlers import (
    clearpath_exception_handler,
    general_exception_handler,
    validation_exception_handler,
)
from src.api.exceptions import (
    ClearPathException,
    ForbiddenError,
    InvalidInputError,
    RateLimitError,
    StorageUnavailableError,
)
from src.api.rate_limit import check_rate_limit, cleanup_rate_limits
from src.api.validators import (
    validate_consent_kind,
    validate_limit,
    validate_operator_notes,
    validate_queue_sort,
    validate_review_id,
    validate_user_id,
)
from src.config import DB_PATH, MAINTENANCE_INTERVAL_SECONDS, RECOMMENDATION_CACHE_TTL
from src.database.db_config import should_use_firestore
from src.guardrails.consent_gate import ConsentGate
from src.personas.assignment import generate_persona_profile
from src.recommend.cache import RecommendationCache
from src.recommend.candidates import generate_candidates
from src.recommend.orchestrator import RecommendationOrchestrator
from src.review.ledger import ReviewLedger
from src.review.operator_service import OperatorReviewService
from src.utils.logging import get_logger

logger = get_logger("api")


# ============================================================================
# Service wiring
# ============================================================================

@lru_cache(maxsize=1)
def get_backend() -> dict:
    """Storage backend selection, resolved once per process."""
    use_firestore = should_use_firestore()
    return {"use_firestore": use_firestore, "db_path": None if use_firestore else DB_PATH}


@lru_cache(maxsize=1)
def get_cache() -> RecommendationCache:
    return RecommendationCache(ttl_seconds=RECOMMENDATION_CACHE_TTL)


@lru_cache(maxsize=1)
def get_ledger() -> ReviewLedger:
    return ReviewLedger(**get_backend())


@lru_cache(maxsize=1)
def get_consent_gate() -> ConsentGate:
    return ConsentGate(get_cache(), **get_backend())


@lru_cache(maxsize=1)
def get_orchestrator() -> RecommendationOrchestrator:
    return RecommendationOrchestrator(
        consent_gate=get_consent_gate(),
        ledger=get_ledger(),
        cache=get_cache(),
        profile_provider=partial(generate_persona_profile, **get_backend()),
        candidate_generator=generate_candidates,
    )


@lru_cache(maxsize=1)
def get_operator_service() -> OperatorReviewService:
    return OperatorReviewService(get_ledger())


def run_maintenance(cache: Optional[RecommendationCache] = None) -> int:
    """Drop expired cache entries and stale rate-limit windows.

    Returns the number of cache entries removed.
    """
    cleanup_rate_limits()
    removed = (cache or get_cache()).clean_expired()
    if removed:
        logger.debug(f"Maintenance removed {removed} expired cache entries")
    return removed


async def maintenance_loop(interval: float = MAINTENANCE_INTERVAL_SECONDS) -> None:
    while True:
        await asyncio.sleep(interval)
        run_maintenance()


@asynccontextmanager
async def lifespan(app: FastAPI):
    backend = get_backend()
    if not backend["use_firestore"]:
        from src.database.db import init_schema
        init_schema(backend["db_path"])
    logger.info(f"ClearPath API started ({'firestore' if backend['use_firestore'] else 'sqlite'} backend)")
    maintenance = asyncio.create_task(maintenance_loop())
    yield
    maintenance.cancel()
    get_orchestrator().executor.shutdown(wait=False)


app = FastAPI(
    title="ClearPath API",
    description="Guarded financial education recommendations with operator review",
    version="1.0.0",
    lifespan=lifespan,
)

# Add exception handlers
app.add_exception_handler(ClearPathException, clearpath_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

# Configure CORS for the local consumer and operator frontends
origins = [
    "http://localhost:5173",
    "http://localhost:5174",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:5174",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request/Response logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all API requests and responses."""
    request_id = getattr(request.state, "request_id", "unknown")

    start_time = time.time()
    logger.info(
        f"Request: {request.method} {request.url.path}",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params)
        }
    )

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(
        f"Response: {request.method} {request.url.path} - {response.status_code}",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "process_time_ms": round(process_time * 1000, 2)
        }
    )

    return response


# Request ID middleware (registered last so it runs first)
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add request ID to all requests for tracing."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ============================================================================
# Helpers
# ============================================================================

def parse_user_id(user_id: str) -> int:
    is_valid, error_msg, parsed = validate_user_id(user_id)
    if not is_valid:
        raise InvalidInputError(error_msg, field="user_id")
    return parsed


def parse_review_id(review_id) -> int:
    is_valid, error_msg, parsed = validate_review_id(review_id)
    if not is_valid:
        raise InvalidInputError(error_msg, field="review_id")
    return parsed


def parse_consent_kind(kind: Optional[str]) -> str:
    is_valid, error_msg, parsed = validate_consent_kind(kind)
    if not is_valid:
        raise InvalidInputError(error_msg, field="kind")
    return parsed


def enforce_rate_limit(current_user: User, endpoint: str) -> None:
    is_allowed, retry_after = check_rate_limit(current_user.uid, endpoint)
    if not is_allowed:
        raise RateLimitError(f"Rate limit exceeded for {endpoint} endpoint", retry_after=retry_after)


def operator_identity(current_user: User) -> str:
    return current_user.email or current_user.uid


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


# ============================================================================
# Request models
# ============================================================================

class ConsentRequest(BaseModel):
    kind: Optional[str] = None


class ApproveRequest(BaseModel):
    review_id: int
    notes: Optional[str] = None


class OverrideRequest(BaseModel):
    review_id: int
    notes: Optional[str] = None


class FlagRequest(BaseModel):
    reason: Optional[str] = None


# ============================================================================
# Health
# ============================================================================

@app.get("/api/health")
def health_check(backend: dict = Depends(get_backend)):
    """Health check endpoint with database connectivity."""
    db_status = "connected"
    db_error = None

    try:
        if backend["use_firestore"]:
            from src.database.firestore import ping
            ping()
        else:
            from src.database.db import get_db_connection
            with get_db_connection(backend["db_path"]) as conn:
                conn.execute("SELECT 1")
    except StorageUnavailableError as e:
        db_status = "error"
        db_error = e.message
        logger.error(f"Database health check failed: {e.message}")

    health_response = {
        "status": "ok" if db_status == "connected" else "degraded",
        "timestamp": datetime.now().isoformat(),
        "database": {
            "type": "firestore" if backend["use_firestore"] else "sqlite",
            "status": db_status,
            "error": db_error
        },
    }
    return JSONResponse(status_code=200 if db_status == "connected" else 503, content=health_response)


# ============================================================================
# Consumer endpoints
# ============================================================================

@app.get("/api/users/{user_id}/recommendations")
def get_user_recommendations(
    user_id: str,
    current_user: User = Depends(get_current_user),
    orchestrator: RecommendationOrchestrator = Depends(get_orchestrator)
):
    """Recommendations the user may see right now.

    Returns the approved snapshot, a pending placeholder, or freshly generated
    content that has just been queued for operator review.
    """
    uid = parse_user_id(user_id)
    require_user_access(uid, current_user)
    enforce_rate_limit(current_user, "recommendations")

    response = orchestrator.get_recommendations(uid)
    return response.model_dump()


@app.post("/api/users/{user_id}/consent")
def grant_consent(
    user_id: str,
    request: Request,
    body: Optional[ConsentRequest] = None,
    current_user: User = Depends(get_current_user),
    consent_gate: ConsentGate = Depends(get_consent_gate)
):
    """Grant consent (data_processing by default, or ai_features)."""
    uid = parse_user_id(user_id)
    if current_user.user_id != uid:
        raise ForbiddenError("Cannot consent for another user")
    enforce_rate_limit(current_user, "consent")

    kind = parse_consent_kind(body.kind if body else None)
    ip_address = client_ip(request)
    record = consent_gate.grant(uid, kind, ip_address=ip_address)

    logger.info(f"Consent {kind} granted for user {uid} from IP {ip_address}")
    return {"success": True, "message": "Consent granted", "consent": record.model_dump(mode="json")}


@app.delete("/api/users/{user_id}/consent")
def revoke_consent(
    user_id: str,
    request: Request,
    kind: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    consent_gate: ConsentGate = Depends(get_consent_gate)
):
    """Revoke consent. Cached recommendation state is cleared before this returns."""
    uid = parse_user_id(user_id)
    if current_user.user_id != uid:
        raise ForbiddenError("Cannot revoke consent for another user")
    enforce_rate_limit(current_user, "consent")

    kind = parse_consent_kind(kind)
    record = consent_gate.revoke(uid, kind, ip_address=client_ip(request))
    return {"success": True, "message": "Consent revoked", "consent": record.model_dump(mode="json")}


@app.get("/api/users/{user_id}/consent")
def get_consent_status(
    user_id: str,
    kind: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    consent_gate: ConsentGate = Depends(get_consent_gate)
):
    """Consent status. Users can view their own, operators can view any."""
    uid = parse_user_id(user_id)
    require_user_access(uid, current_user)

    record = consent_gate.status(uid, parse_consent_kind(kind))
    return record.model_dump(mode="json")


# ============================================================================
# Operator endpoints
# ============================================================================

@app.get("/api/operator/review")
def get_review_queue(
    sort: Optional[str] = None,
    current_user: User = Depends(require_operator),
    service: OperatorReviewService = Depends(get_operator_service)
):
    """Pending reviews awaiting an operator decision."""
    is_valid, error_msg, sort_by = validate_queue_sort(sort)
    if not is_valid:
        raise InvalidInputError(error_msg, field="sort")

    reviews = service.get_review_queue(sort_by)
    return {
        "reviews": [review.model_dump(mode="json") for review in reviews],
        "count": len(reviews),
        "sort": sort_by,
    }


@app.post("/api/operator/approve")
def approve_review(
    body: ApproveRequest,
    current_user: User = Depends(require_operator),
    service: OperatorReviewService = Depends(get_operator_service)
):
    """Approve a pending review so its snapshot is served to the user."""
    review_id = parse_review_id(body.review_id)
    enforce_rate_limit(current_user, "approve")

    is_valid, error_msg, notes = validate_operator_notes(body.notes)
    if not is_valid:
        raise InvalidInputError(error_msg, field="notes")

    review = service.approve(review_id, notes=notes, reviewed_by=operator_identity(current_user))
    return {"success": True, "message": "Review approved", "review": review.model_dump(mode="json")}


@app.post("/api/operator/override")
def override_review(
    body: OverrideRequest,
    current_user: User = Depends(require_operator),
    service: OperatorReviewService = Depends(get_operator_service)
):
    """Override a pending review. Notes explaining the decision are required."""
    review_id = parse_review_id(body.review_id)
    enforce_rate_limit(current_user, "override")

    is_valid, error_msg, notes = validate_operator_notes(body.notes, required=True)
    if not is_valid:
        raise InvalidInputError(error_msg, field="notes")

    review = service.override(review_id, notes=notes, reviewed_by=operator_identity(current_user))
    return {"success": True, "message": "Review overridden", "review": review.model_dump(mode="json")}


@app.get("/api/operator/reviews/{review_id}")
def get_review_detail(
    review_id: str,
    current_user: User = Depends(require_operator),
    service: OperatorReviewService = Depends(get_operator_service)
):
    review = service.get_review(parse_review_id(review_id))
    return review.model_dump(mode="json")


@app.get("/api/operator/users/{user_id}/reviews")
def get_user_reviews(
    user_id: str,
    limit: Optional[int] = None,
    current_user: User = Depends(require_operator),
    service: OperatorReviewService = Depends(get_operator_service)
):
    """Every review for a user, newest first, with the operator actions taken on them.

    ``limit`` caps the number of actions returned (default 50, at most 100).
    """
    uid = parse_user_id(user_id)
    is_valid, error_msg, action_limit = validate_limit(limit)
    if not is_valid:
        raise InvalidInputError(error_msg, field="limit")
    reviews = service.get_user_history(uid)
    return {
        "user_id": uid,
        "reviews": [review.model_dump(mode="json") for review in reviews],
        "actions": service.get_actions(user_id=uid, limit=action_limit),
    }


@app.post("/api/operator/reviews/{review_id}/flag")
def flag_review(
    review_id: str,
    body: Optional[FlagRequest] = None,
    current_user: User = Depends(require_operator),
    service: OperatorReviewService = Depends(get_operator_service)
):
    """Flag a pending review for follow-up."""
    rid = parse_review_id(review_id)
    enforce_rate_limit(current_user, "flag")

    is_valid, error_msg, reason = validate_operator_notes(body.reason if body else None)
    if not is_valid:
        raise InvalidInputError(error_msg, field="reason")

    review = service.flag(rid, reason=reason, operator_id=operator_identity(current_user))
    return {"success": True, "message": "Review flagged", "review": review.model_dump(mode="json")}


@app.delete("/api/operator/reviews/{review_id}/flag")
def unflag_review(
    review_id: str,
    current_user: User = Depends(require_operator),
    service: OperatorReviewService = Depends(get_operator_service)
):
    rid = parse_review_id(review_id)
    enforce_rate_limit(current_user, "flag")

    review = service.unflag(rid, operator_id=operator_identity(current_user))
    return {"success": True, "message": "Flag removed", "review": review.model_dump(mode="json")}


@app.post("/api/operator/users/{user_id}/regenerate")
def regenerate_recommendations(
    user_id: str,
    current_user: User = Depends(require_operator),
    orchestrator: RecommendationOrchestrator = Depends(get_orchestrator),
    service: OperatorReviewService = Depends(get_operator_service)
):
    """Run a new generation cycle into the user's pending review."""
    uid = parse_user_id(user_id)
    enforce_rate_limit(current_user, "regenerate")

    review = orchestrator.refresh(uid)
    service.record_regeneration(operator_identity(current_user), review)
    return {"success": True, "message": "Recommendations regenerated", "review": review.model_dump(mode="json")}


@app.get("/api/operator/metrics")
def get_operator_metrics(
    current_user: User = Depends(require_operator),
    orchestrator: RecommendationOrchestrator = Depends(get_orchestrator),
    ledger: ReviewLedger = Depends(get_ledger),
    cache: RecommendationCache = Depends(get_cache)
):
    """Review queue metrics with cache and audit-write statistics."""
    return {
        "reviews": compute_review_metrics(ledger.list_all()),
        "cache": cache.get_stats(),
        "pipeline": orchestrator.get_stats(),
        "timestamp": datetime.now().isoformat(),
    }
