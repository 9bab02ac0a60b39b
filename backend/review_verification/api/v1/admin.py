"""Admin API router.

Moderation actions on reviews and token maintenance. All endpoints require
the AdminSubject dependency; every moderation call writes exactly one
AdminActionLog entry with the caller's IP.
"""

import structlog
from fastapi import APIRouter, Request, status

from review_verification.api.deps import (
    AdminSubject,
    ClientIp,
    Scheduler,
    Tokens,
    Workflow,
)
from review_verification.core.config import settings
from review_verification.core.rate_limiting import limiter
from review_verification.core.responses import DataResponse
from review_verification.schemas.reviews import (
    AdminActionLogEntry,
    AdminActionRequest,
    CleanupResponse,
    TokenStatsResponse,
)

logger = structlog.get_logger()

router = APIRouter()


@router.post("/reviews/actions", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_admin)
async def apply_review_action(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: AdminActionRequest,
    admin: AdminSubject,
    client_ip: ClientIp,
    workflow: Workflow,
) -> DataResponse[AdminActionLogEntry]:
    """Apply a moderation action to a review.

    reject and archive also revoke any still-valid verification token
    for the review.
    """
    entry = await workflow.apply_admin_action(
        action=body.action,
        review_id=body.review_id,
        notes=body.notes,
        performed_by=admin,
        source_address=client_ip,
    )
    logger.info(
        "admin_review_action",
        action=entry.action,
        review_id=entry.review_id,
        admin=admin,
        client_ip=client_ip,
    )
    return DataResponse(data=entry)


@router.get("/tokens/stats")
@limiter.limit(settings.rate_limit_admin)
async def get_token_stats(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    _admin: AdminSubject,
    tokens: Tokens,
) -> DataResponse[TokenStatsResponse]:
    """Token counts by state."""
    stats = await tokens.get_stats()
    return DataResponse(
        data=TokenStatsResponse(
            total=stats.total,
            active=stats.active,
            expired=stats.expired,
            used=stats.used,
            exhausted=stats.exhausted,
        )
    )


@router.post("/tokens/cleanup")
@limiter.limit(settings.rate_limit_admin)
async def run_token_cleanup(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    admin: AdminSubject,
    scheduler: Scheduler,
) -> DataResponse[CleanupResponse]:
    """Run one cleanup sweep now."""
    result = await scheduler.sweep()
    logger.info(
        "admin_token_cleanup",
        admin=admin,
        cleaned=result.cleaned,
        orphans_removed=result.orphans_removed,
        errors=result.errors,
    )
    return DataResponse(
        data=CleanupResponse(
            cleaned=result.cleaned,
            orphans_removed=result.orphans_removed,
            errors=result.errors,
        )
    )
