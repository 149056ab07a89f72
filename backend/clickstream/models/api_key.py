"""API Key model."""
import uuid
from sqlalchemy import Column, String, Boolean
from clickstream.database import Base, UTCDateTime, utc_now


class APIKey(Base):
    """API Key model for authenticating SDK and dashboard requests."""
    __tablename__ = "api_keys"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    principal_id = Column(String(255), nullable=False, index=True)  # Owner the key acts as
    key_hash = Column(String, nullable=False, unique=True, index=True)  # Hashed API key
    key_prefix = Column(String(8), nullable=False)  # First 8 chars for display
    name = Column(String, nullable=False)  # e.g., "Production", "Staging"
    scopes = Column(String, nullable=False, default="")  # Comma-separated
    is_active = Column(Boolean, default=True, nullable=False)
    last_used_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    expires_at = Column(UTCDateTime, nullable=True)

    @property
    def scope_list(self) -> list:
        return [s.strip() for s in (self.scopes or "").split(",") if s.strip()]
