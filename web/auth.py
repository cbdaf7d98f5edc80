"""
API Authentication - Signed Bearer Tokens for Students, Hosts and Admins

Implements:
- Principal tokens signed with HMAC-SHA256 (session secret from config)
- FastAPI dependencies resolving the caller and checking their role

Identity itself belongs to an external provider; this module only trusts what
it signed. Student approval is checked against the stored profile, not the
token, so an approval takes effect without re-issuing tokens.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from datetime import datetime, timedelta
from typing import Callable, Final, Optional

from fastapi import Depends, HTTPException, Request

from core.bidding import ApprovalStatus, BiddingService, Principal, Role
from core.bidding.schema import utcnow


# =============================================================================
# Configuration
# =============================================================================

TOKEN_DURATION_HOURS: Final[int] = 8
BEARER_PREFIX: Final[str] = "Bearer "


# =============================================================================
# Token Management
# =============================================================================


def _signature(payload_b64: str, secret: str) -> str:
    return hmac.new(secret.encode(), payload_b64.encode(), hashlib.sha256).hexdigest()


def sign_token(
    principal: Principal,
    secret: str,
    expires_at: Optional[datetime] = None,
) -> str:
    """
    Sign and encode a principal as a bearer token.

    Format: base64(json_payload).signature
    """
    expires_at = expires_at or utcnow() + timedelta(hours=TOKEN_DURATION_HOURS)
    data = principal.to_dict()
    data["expires_at"] = expires_at.isoformat()

    payload = json.dumps(data, separators=(",", ":"))
    payload_b64 = base64.urlsafe_b64encode(payload.encode()).decode()
    return f"{payload_b64}.{_signature(payload_b64, secret)}"


def verify_token(token: str, secret: str, now: Optional[datetime] = None) -> Optional[Principal]:
    """
    Verify and decode a signed bearer token.

    Returns Principal if valid and not expired, None otherwise.
    """
    try:
        payload_b64, signature = token.rsplit(".", 1)
        if not hmac.compare_digest(signature, _signature(payload_b64, secret)):
            return None

        data = json.loads(base64.urlsafe_b64decode(payload_b64.encode()).decode())
        expires_at = datetime.fromisoformat(data["expires_at"])
        if (now or utcnow()) > expires_at:
            return None

        return Principal.from_dict(data)

    except (ValueError, KeyError, TypeError):
        return None


# =============================================================================
# Dependencies
# =============================================================================


def get_service(request: Request) -> BiddingService:
    """The BiddingService the app was created with."""
    return request.app.state.service


def get_current_principal(request: Request) -> Principal:
    """
    Dependency that requires a valid bearer token.

    Raises HTTPException(401) if the token is missing, forged or expired.
    """
    header = request.headers.get("Authorization", "")
    if not header.startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Authentication required")

    secret = request.app.state.config.session_secret
    principal = verify_token(header[len(BEARER_PREFIX):].strip(), secret)
    if principal is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return principal


def get_optional_principal(request: Request) -> Optional[Principal]:
    """Like get_current_principal, but anonymous callers get None."""
    if not request.headers.get("Authorization"):
        return None
    return get_current_principal(request)


def require_roles(*roles: Role) -> Callable[..., Principal]:
    """
    Build a dependency that requires one of `roles`.

    Raises HTTPException(403) for any other role.
    """
    allowed = frozenset(roles)

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(
                status_code=403,
                detail=f"Requires role: {', '.join(sorted(r.value for r in allowed))}",
            )
        return principal

    return dependency


require_admin = require_roles(Role.ADMIN)
require_student = require_roles(Role.STUDENT)
require_host = require_roles(Role.HOTEL_OWNER)
require_host_or_admin = require_roles(Role.HOTEL_OWNER, Role.ADMIN)


def require_approved_student(
    principal: Principal = Depends(require_student),
    service: BiddingService = Depends(get_service),
) -> Principal:
    """
    Dependency for bidding and checkout: the student's profile must be
    APPROVED.

    Raises HTTPException(403) otherwise.
    """
    if service.student_approval(principal.principal_id) != ApprovalStatus.APPROVED:
        raise HTTPException(
            status_code=403,
            detail="Your student account is pending approval",
        )
    return principal
