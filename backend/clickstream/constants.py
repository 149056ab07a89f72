"""Application-wide constants."""

# Event types emitted by the tracker and recognised by the server
class EventType:
    """Event type constants."""
    PAGE_VIEW = "page_view"
    PAGE_EXIT = "page_exit"
    CLICK = "click"
    MOUSE_CLICK = "mouse_click"
    CONTEXT_MENU = "context_menu"
    SCROLL = "scroll"
    MOUSE_MOVE = "mouse_move"
    VIEWPORT_RESIZE = "viewport_resize"
    FORM_FOCUS = "form_focus"
    FORM_BLUR = "form_blur"
    FORM_CHANGE = "form_change"
    FORM_SUBMIT = "form_submit"
    ERROR = "error"
    PROMISE_REJECTION = "promise_rejection"
    PERFORMANCE = "performance"
    RESOURCE_TIMING = "resource_timing"
    LARGEST_CONTENTFUL_PAINT = "largest_contentful_paint"
    FIRST_INPUT_DELAY = "first_input_delay"
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    USER_IDLE = "user_idle"
    VISIBILITY_CHANGE = "visibility_change"
    NETWORK_CHANGE = "network_change"
    CONVERSION = "conversion"
    CUSTOM_PREFIX = "custom_"


INTERACTION_EVENT_TYPES = (EventType.CLICK, EventType.SCROLL, EventType.FORM_SUBMIT)


# Session actions accepted by the session endpoint
class SessionAction:
    """Session action constants."""
    START = "start"
    UPDATE = "update"
    END = "end"


# Scopes granted to API keys
class Scope:
    """API key scope constants."""
    EVENTS_WRITE = "events:write"
    EVENTS_READ = "events:read"
    EVENTS_DELETE = "events:delete"
    ANALYTICS_READ = "analytics:read"


ALL_SCOPES = (Scope.EVENTS_WRITE, Scope.EVENTS_READ, Scope.EVENTS_DELETE, Scope.ANALYTICS_READ)

# Sanitization
REDACTION_MARKER = "[REDACTED]"
SENSITIVE_FIELDS = (
    "password",
    "token",
    "secret",
    "apikey",
    "api_key",
    "creditcard",
    "credit_card",
    "ssn",
    "auth",
    "authorization",
)
MAX_EVENT_DATA_FIELDS = 50

# Cache namespaces
ANALYTICS_CACHE_PREFIX = "analytics:"
AGGREGATION_CACHE_PREFIX = "analytics:agg:"
RESPONSE_CACHE_PREFIX = "analytics:http:"
RATE_LIMIT_PREFIX = "rl:"

# Aggregation
UNKNOWN_DIMENSION = "unknown"
REALTIME_WINDOW_MINUTES = 5
DASHBOARD_RANGES = {"24h": 1, "7d": 7, "30d": 30, "90d": 90}
MAX_QUERY_RANGE_DAYS = 366
