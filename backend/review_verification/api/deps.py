"""Shared dependencies for API endpoints.

Services are built once by create_app() and stored on ``app.state``;
these dependencies hand them to routers. Nothing here is a module-level
singleton, so every test app gets its own isolated services.

WHY DEPENDENCY INJECTION:
- Tests build an app around an in-memory repository and fake clock
- Consistent admin auth across all admin endpoints
- Routers never construct services themselves
"""

from typing import Annotated

from fastapi import Depends, Request

from review_verification.core.auth import decode_admin_jwt
from review_verification.core.config import settings
from review_verification.core.errors import UnauthorizedError
from review_verification.services.cleanup_scheduler import CleanupScheduler
from review_verification.services.review_workflow import ReviewWorkflow
from review_verification.services.token_service import TokenService

_BEARER_PREFIX = "bearer "


def get_workflow(request: Request) -> ReviewWorkflow:
    """Review workflow for this app."""
    workflow: ReviewWorkflow = request.app.state.workflow
    return workflow


def get_token_service(request: Request) -> TokenService:
    """Token service for this app."""
    tokens: TokenService = request.app.state.token_service
    return tokens


def get_cleanup_scheduler(request: Request) -> CleanupScheduler:
    """Cleanup scheduler for this app."""
    scheduler: CleanupScheduler = request.app.state.cleanup_scheduler
    return scheduler


def get_client_ip(request: Request) -> str:
    """Client IP address as seen by the server.

    Behind a reverse proxy, run uvicorn with --proxy-headers so that
    request.client reflects X-Forwarded-For.
    """
    if request.client is None:
        return "unknown"
    return request.client.host


def require_admin(request: Request) -> str:
    """Authenticate an admin caller.

    Reads the JWT from ``Authorization: Bearer`` first, then the admin
    cookie.

    Returns:
        Admin subject (the sub claim).

    Raises:
        UnauthorizedError: No token or an invalid one (401).
        AdminRequiredError: Valid token without the admin claim (403).
    """
    token: str | None = None
    header = request.headers.get("Authorization", "")
    if header.lower().startswith(_BEARER_PREFIX):
        token = header[len(_BEARER_PREFIX) :].strip()
    if not token:
        token = request.cookies.get(settings.auth_cookie_name)
    if not token:
        raise UnauthorizedError()
    return decode_admin_jwt(token)


# Reusable type aliases for dependency injection
Workflow = Annotated[ReviewWorkflow, Depends(get_workflow)]
Tokens = Annotated[TokenService, Depends(get_token_service)]
Scheduler = Annotated[CleanupScheduler, Depends(get_cleanup_scheduler)]
ClientIp = Annotated[str, Depends(get_client_ip)]
AdminSubject = Annotated[str, Depends(require_admin)]
