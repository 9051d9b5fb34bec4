"""
    Session resolution.

    Sign-in happens with an external identity provider; this service only
    sees the resulting bearer token. The allow-list table is consulted on
    sign-in and again on every request so that a removed email loses access
    immediately and ``is_admin`` always reflects the stored record.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

import jwt
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from imagevault.dependencies import get_allowlist_service
from imagevault.exceptions import ConfigurationException, UnauthorizedException, UpstreamException
from imagevault.settings import settings
from imagevault.storage.dynamodb import AllowlistService

log = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)

@dataclass(frozen=True)
class Session:
    email: Optional[str]
    name: Optional[str]
    is_admin: bool = False

    @property
    def user_id(self) -> Optional[str]:
        """Identity recorded as the owner of images this session creates."""
        return self.email or self.name

def decode_session_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.nextauth_secret, algorithms=[settings.session_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise UnauthorizedException("Unauthorized: session expired") from exc
    except jwt.PyJWTError as exc:
        raise UnauthorizedException("Unauthorized: invalid session") from exc

def _parse_payload(payload: Dict[str, Any]) -> Dict[str, Optional[str]]:
    email = str(payload.get("email") or payload.get("sub") or "").strip().lower()
    if not email:
        raise UnauthorizedException("Unauthorized: session has no email")
    name = payload.get("name")
    return {"email": email, "name": str(name) if name else None}

def _lookup(allowlist: AllowlistService, email: str) -> Optional[Dict[str, Any]]:
    if not settings.email_table:
        raise ConfigurationException("EMAIL_TABLE is not configured")
    try:
        return allowlist.get_user(email)
    except (BotoCoreError, ClientError) as e:
        log.error(f"Allow-list lookup failed: {e}")
        raise UpstreamException("Failed to verify user") from e

def sign_in(allowlist: AllowlistService, email: str, name: Optional[str] = None) -> Session:
    """Admits an identity only if its email is on the allow-list."""
    email = (email or "").strip().lower()
    if not email:
        raise UnauthorizedException("Unauthorized: sign in required")
    record = _lookup(allowlist, email)
    if not record:
        log.warning("Rejected sign-in for unlisted email %s", email)
        raise UnauthorizedException("Unauthorized: email is not on the allow-list")
    return Session(email=email, name=name, is_admin=bool(record.get("isAdmin", False)))

def get_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    allowlist: AllowlistService = Depends(get_allowlist_service),
) -> Session:
    if credentials is None:
        raise UnauthorizedException("Unauthorized: sign in required")
    identity = _parse_payload(decode_session_token(credentials.credentials))
    return sign_in(allowlist, identity["email"], identity["name"])

def can_modify(session: Session, record: Dict[str, Any]) -> bool:
    """Owner or admin."""
    return session.is_admin or (session.user_id is not None and record.get("userId") == session.user_id)
