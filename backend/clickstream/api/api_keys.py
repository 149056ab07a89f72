"""API key management endpoints (admin only)."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from clickstream.auth.api_key import verify_admin_key
from clickstream.constants import ALL_SCOPES
from clickstream.database import get_db
from clickstream.models import APIKey
from clickstream.utils.exceptions import handle_database_error, not_found_error, ValidationError
from clickstream.utils.hashing import generate_api_key, hash_api_key
from clickstream.utils.logger import logger

router = APIRouter(prefix="/api/api-keys", tags=["api-keys"], dependencies=[Depends(verify_admin_key)])


class APIKeyCreate(BaseModel):
    principal_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    scopes: List[str] = Field(default_factory=lambda: list(ALL_SCOPES))
    expires_at: Optional[datetime] = None


class APIKeyResponse(BaseModel):
    id: str
    principal_id: str
    key_prefix: str
    name: str
    scopes: List[str]
    is_active: bool
    last_used_at: Optional[str]
    created_at: Optional[str]
    expires_at: Optional[str]

    @classmethod
    def from_model(cls, obj: APIKey) -> "APIKeyResponse":
        """Convert SQLAlchemy model to response model."""
        return cls(
            id=obj.id,
            principal_id=obj.principal_id,
            key_prefix=obj.key_prefix,
            name=obj.name,
            scopes=obj.scope_list,
            is_active=obj.is_active,
            last_used_at=obj.last_used_at.isoformat() if obj.last_used_at else None,
            created_at=obj.created_at.isoformat() if obj.created_at else None,
            expires_at=obj.expires_at.isoformat() if obj.expires_at else None,
        )


class APIKeyCreated(BaseModel):
    key: str
    apiKey: APIKeyResponse


@router.get("", response_model=List[APIKeyResponse])
async def list_api_keys(
    principal_id: Optional[str] = None,
    db: Session = Depends(get_db),
) -> List[APIKeyResponse]:
    """
    List API keys, optionally for one principal.

    Args:
        principal_id: Only keys acting as this principal
        db: Database session

    Returns:
        API keys (hashes are never returned)
    """
    query = db.query(APIKey)
    if principal_id:
        query = query.filter(APIKey.principal_id == principal_id)
    return [APIKeyResponse.from_model(k) for k in query.order_by(APIKey.created_at.asc()).all()]


@router.post("", response_model=APIKeyCreated, status_code=201)
async def create_api_key(
    payload: APIKeyCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> APIKeyCreated:
    """
    Create a new API key.

    Returns:
        The raw key (only shown once) and the stored key details
    """
    unknown = sorted(set(payload.scopes) - set(ALL_SCOPES))
    if unknown:
        raise ValidationError("Unknown scopes", details={"scopes": unknown})

    raw_key = generate_api_key()
    new_key = APIKey(
        principal_id=payload.principal_id,
        key_hash=hash_api_key(raw_key, request.app.state.settings.api_key_salt),
        key_prefix=raw_key[:8],
        name=payload.name,
        scopes=",".join(payload.scopes),
        is_active=True,
        expires_at=payload.expires_at,
    )
    try:
        db.add(new_key)
        db.commit()
        db.refresh(new_key)
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to create API key: {e}", exc_info=True)
        raise handle_database_error(e, "create_api_key")

    logger.info(f"Created API key {new_key.id} for principal {payload.principal_id}")
    return APIKeyCreated(key=raw_key, apiKey=APIKeyResponse.from_model(new_key))


@router.delete("/{key_id}")
async def revoke_api_key(
    key_id: str,
    db: Session = Depends(get_db),
) -> dict:
    """Deactivate an API key. The row is kept for auditing."""
    key = db.query(APIKey).filter(APIKey.id == key_id).first()
    if not key:
        raise not_found_error("API key", key_id)

    key.is_active = False
    db.commit()
    logger.info(f"Revoked API key {key_id}")
    return {"success": True}
