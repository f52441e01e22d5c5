"""Caller identity for the public API and shared-secret checks for internal routes."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from feedback_engine.core.firebase import verify_id_token

security_scheme = HTTPBearer()

_PRIVILEGED_TIERS = frozenset({"premium", "enterprise"})


@dataclass(frozen=True)
class AuthContext:
  """Verified caller identity, resolved once per request."""

  user_id: str
  is_admin: bool = False
  tier: str | None = None

  @property
  def is_privileged(self) -> bool:
    return (self.tier or "").lower() in _PRIVILEGED_TIERS


def _role_name(claims: dict[str, Any]) -> str | None:
  role = claims.get("role")
  if isinstance(role, dict):
    role = role.get("name")
  return str(role).lower() if role else None


def auth_context_from_claims(claims: dict[str, Any]) -> AuthContext:
  """Map verified token claims to an AuthContext."""
  user_id = claims.get("uid") or claims.get("user_id") or claims.get("sub")
  if not user_id:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token claims")
  tier = claims.get("tier")
  tier = str(tier).lower() if tier else None
  lms_role = str(claims.get("lmsRole") or "").lower()
  is_admin = _role_name(claims) == "admin" or lms_role == "admin" or tier == "enterprise"
  return AuthContext(user_id=str(user_id), is_admin=is_admin, tier=tier)


async def get_auth_context(token: Annotated[HTTPAuthorizationCredentials, Depends(security_scheme)]) -> AuthContext:
  """Verify the Firebase ID token and build the caller's AuthContext."""
  decoded_claims = await run_in_threadpool(verify_id_token, token.credentials)
  if not decoded_claims:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication credentials", headers={"WWW-Authenticate": "Bearer"})
  return auth_context_from_claims(decoded_claims)


async def require_admin(auth: Annotated[AuthContext, Depends(get_auth_context)]) -> AuthContext:
  if not auth.is_admin:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not enough permissions")
  return auth


def _presented_secrets(request: Request, header_name: str) -> list[str]:
  presented = []
  header_value = request.headers.get(header_name)
  if header_value:
    presented.append(header_value)
  auth_header = request.headers.get("authorization")
  if auth_header and auth_header.lower().startswith("bearer "):
    presented.append(auth_header[7:].strip())
  return presented


def verify_shared_secret(request: Request, *, expected: str | None, header_name: str) -> None:
  """Reject internal calls without the configured secret; an unset secret rejects everything."""
  if not expected:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Internal endpoint not configured.")
  for candidate in _presented_secrets(request, header_name):
    if secrets.compare_digest(candidate, expected):
      return
  raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid internal secret.")
