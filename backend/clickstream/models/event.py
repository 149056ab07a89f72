"""Tracking event model for persisted telemetry."""
import uuid
from sqlalchemy import Column, String, Text, JSON, Index
from clickstream.database import Base, UTCDateTime, utc_now


class TrackingEvent(Base):
    """One persisted telemetry event.

    Session start/end markers live in the same table; ``last_activity`` is only
    set on ``session_start`` markers.
    """
    __tablename__ = "tracking_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_type = Column(String(100), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)  # Authenticated principal
    client_user_id = Column(String(255), nullable=True)  # From SDK (optional)
    session_id = Column(String(255), nullable=False, index=True)
    timestamp = Column(UTCDateTime, nullable=False, index=True)  # Client-assigned
    received_at = Column(UTCDateTime, nullable=False, default=utc_now)
    url = Column(Text, nullable=True)
    ip = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    device_type = Column(String(50), nullable=True)
    event_data = Column(JSON, nullable=False, default=dict)
    device_info = Column(JSON, nullable=True)
    network_info = Column(JSON, nullable=True)
    last_activity = Column(UTCDateTime, nullable=True)
    version = Column(String(10), nullable=False, default="1.0")

    __table_args__ = (
        Index("idx_user_type_timestamp", "user_id", "event_type", "timestamp"),
        Index("idx_session_timestamp", "session_id", "timestamp"),
        Index("idx_device_type", "device_type"),
    )

    def to_dict(self) -> dict:
        """Serialize to the camelCase wire shape."""
        return {
            "id": self.id,
            "eventType": self.event_type,
            "userId": self.user_id,
            "clientUserId": self.client_user_id,
            "sessionId": self.session_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "receivedAt": self.received_at.isoformat() if self.received_at else None,
            "url": self.url,
            "ip": self.ip,
            "userAgent": self.user_agent,
            "deviceType": self.device_type,
            "eventData": self.event_data or {},
            "deviceInfo": self.device_info,
            "networkInfo": self.network_info,
            "lastActivity": self.last_activity.isoformat() if self.last_activity else None,
        }
