"""
auth.py — Caller identity + role gate for the dealer API.

Identity sources, first match wins:
  - BEARER TOKEN: when AUTH_URL is set, `Authorization: Bearer <token>` is
    verified against the identity service (`GET {AUTH_URL}/user`). The
    role and dealer come from the user's app_metadata.

  - TRUSTED HEADERS: X-User-Id / X-User-Role / X-Dealer-Id, set by the
    gateway in front of this service after it has authenticated the caller.

  - DEV IDENTITY: only when ALLOW_DEV_IDENTITY=1. Requests without any
    identity act as the fixed "system" Admin. Local runs and tests only.

Anything else is a 401. The role check (`require_roles`) runs as a route
dependency, so a rejected caller never reaches validation or the database.
"""

import logging
import os
from dataclasses import dataclass

import httpx
from fastapi import Depends, HTTPException, Request

logger = logging.getLogger("auth")

# ── Roles ─────────────────────────────────────────────────────────────────────
DEALER_STAFF = "DealerStaff"
DEALER_MANAGER = "DealerManager"
ADMIN = "Admin"
EVM_STAFF = "EVMStaff"

ALL_ROLES = (DEALER_STAFF, DEALER_MANAGER, ADMIN, EVM_STAFF)
SALES_ROLES = (DEALER_STAFF, DEALER_MANAGER)
ORDER_ROLES = (DEALER_STAFF, DEALER_MANAGER, ADMIN)
REPORT_ROLES = (DEALER_MANAGER, ADMIN, EVM_STAFF)

# ── Identity service config ───────────────────────────────────────────────────
AUTH_URL = os.environ.get("AUTH_URL", "").rstrip("/")
AUTH_API_KEY = os.environ.get("AUTH_API_KEY", "")
ALLOW_DEV_IDENTITY = os.environ.get("ALLOW_DEV_IDENTITY", "").strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Caller:
    id: str
    role: str
    dealer_id: str | None = None


DEV_CALLER = Caller(id="system", role=ADMIN, dealer_id=None)

# ── Shared HTTP client (module-level, keep-alive across requests) ─────────────
_http_client: httpx.AsyncClient | None = None

def _get_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None or _http_client.is_closed:
        _http_client = httpx.AsyncClient(
            timeout=10,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )
    return _http_client

async def close_http_client() -> None:
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None

def _auth_headers(token: str) -> dict:
    headers = {"Authorization": f"Bearer {token}"}
    if AUTH_API_KEY:
        headers["apikey"] = AUTH_API_KEY
    return headers

def caller_from_user(data) -> Caller | None:
    """Map an identity-service user document onto a Caller."""
    if not isinstance(data, dict):
        return None
    uid = data.get("id")
    meta = data.get("app_metadata")
    if not isinstance(meta, dict):
        meta = {}
    role = meta.get("role") or data.get("role")
    dealer_id = meta.get("dealer_id") or data.get("dealer_id")
    if not uid or not role:
        return None
    return Caller(id=str(uid), role=str(role), dealer_id=str(dealer_id) if dealer_id else None)

async def fetch_identity(token: str) -> Caller | None:
    try:
        r = await _get_http_client().get(f"{AUTH_URL}/user", headers=_auth_headers(token))
    except httpx.HTTPError as e:
        logger.warning(f"identity service unreachable: {e}")
        raise HTTPException(status_code=503, detail="Identity service unavailable")
    if r.status_code != 200:
        logger.warning(f"identity service rejected token (status {r.status_code})")
        return None
    try:
        data = r.json()
    except ValueError:
        logger.warning("identity service returned a non-JSON body")
        return None
    caller = caller_from_user(data)
    if caller is None:
        logger.warning("identity service returned an unusable user document")
    return caller

def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()

# ── Request helpers ───────────────────────────────────────────────────────────
async def get_caller(request: Request) -> Caller:
    token = _bearer_token(request)
    if token and AUTH_URL:
        caller = await fetch_identity(token)
        if caller is None:
            raise HTTPException(status_code=401, detail="Invalid token")
        return caller

    uid = request.headers.get("x-user-id")
    role = request.headers.get("x-user-role")
    if uid and role:
        return Caller(id=uid, role=role, dealer_id=request.headers.get("x-dealer-id") or None)

    if ALLOW_DEV_IDENTITY:
        return DEV_CALLER
    raise HTTPException(status_code=401, detail="Not authenticated")


def require_roles(*roles: str):
    """Route dependency: 403 unless the caller's role is in `roles` (empty = anyone)."""
    allowed = frozenset(roles)

    async def _gate(caller: Caller = Depends(get_caller)) -> Caller:
        if allowed and caller.role not in allowed:
            raise HTTPException(status_code=403, detail="Forbidden")
        return caller

    return _gate
