"""API key authentication utilities."""
import secrets
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from clickstream.database import get_db, utc_now
from clickstream.models.api_key import APIKey
from clickstream.utils.exceptions import AuthenticationError, AuthorizationError
from clickstream.utils.hashing import hash_api_key
from clickstream.utils.logger import logger


@dataclass(frozen=True)
class Principal:
    """The authenticated caller an API key acts as."""
    id: str
    scopes: FrozenSet[str] = field(default_factory=frozenset)
    key_id: Optional[str] = None

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes


def get_current_principal(
    request: Request,
    api_key: Optional[str] = Header(None, alias="X-API-Key", description="API Key for authentication"),
    db: Session = Depends(get_db),
) -> Principal:
    """
    Resolve the X-API-Key header to a Principal.

    Raises:
        AuthenticationError: If the key is missing, unknown, inactive or expired
    """
    if not api_key:
        raise AuthenticationError("API key is required")

    key_hash = hash_api_key(api_key, request.app.state.settings.api_key_salt)
    db_api_key = db.query(APIKey).filter(
        APIKey.key_hash == key_hash,
        APIKey.is_active.is_(True),
    ).first()

    if not db_api_key:
        raise AuthenticationError("Invalid API key")

    now = utc_now()
    if db_api_key.expires_at and db_api_key.expires_at < now:
        raise AuthenticationError("API key has expired")

    db_api_key.last_used_at = now
    db.commit()

    return Principal(
        id=db_api_key.principal_id,
        scopes=frozenset(db_api_key.scope_list),
        key_id=db_api_key.id,
    )


def require_scope(scope: str):
    """Dependency factory that rejects principals lacking ``scope``."""

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not principal.has_scope(scope):
            logger.warning(f"Principal {principal.id} lacks scope {scope}")
            raise AuthorizationError("Insufficient permissions", details={"requiredScope": scope})
        return principal

    return dependency


def verify_admin_key(
    request: Request,
    admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
) -> None:
    """Guard for key management endpoints."""
    expected = request.app.state.settings.admin_api_key
    if not expected:
        raise AuthorizationError("Key management is disabled")
    if not admin_key or not secrets.compare_digest(admin_key, expected):
        raise AuthenticationError("Invalid admin key")
