"""Event payload variants keyed by event type.

``eventData`` is a tagged union: the event type selects a model with known
optional fields, and any extra keys are kept as bounded opaque data.
"""
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, ConfigDict, model_validator

from clickstream.constants import EventType, MAX_EVENT_DATA_FIELDS


class EventPayload(BaseModel):
    """Base payload: unknown keys are allowed up to MAX_EVENT_DATA_FIELDS."""
    model_config = ConfigDict(extra="allow")

    timestamp: Optional[Any] = None

    @model_validator(mode="after")
    def _bound_extra_fields(self):
        extra = self.model_extra or {}
        if len(extra) > MAX_EVENT_DATA_FIELDS:
            raise ValueError(
                f"eventData has {len(extra)} custom fields (max {MAX_EVENT_DATA_FIELDS})"
            )
        return self


class PageViewData(EventPayload):
    url: Optional[str] = None
    referrer: Optional[str] = None
    title: Optional[str] = None
    loadTime: Optional[float] = None
    pageLoadTime: Optional[float] = None
    viewport: Optional[Any] = None
    language: Optional[str] = None
    timezone: Optional[str] = None


class InteractionData(EventPayload):
    x: Optional[float] = None
    y: Optional[float] = None
    scrollX: Optional[float] = None
    scrollY: Optional[float] = None
    maxScroll: Optional[float] = None
    button: Optional[int] = None
    element: Optional[Any] = None
    page: Optional[str] = None


class FormData(EventPayload):
    formId: Optional[str] = None
    formAction: Optional[str] = None
    formMethod: Optional[str] = None
    element: Optional[Any] = None
    value: Optional[Any] = None


class ErrorData(EventPayload):
    message: Optional[str] = None
    type: Optional[str] = None
    stack: Optional[str] = None
    filename: Optional[str] = None
    lineno: Optional[int] = None
    colno: Optional[int] = None
    url: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    reason: Optional[Any] = None


class PerformanceData(EventPayload):
    loadTime: Optional[float] = None
    firstPaint: Optional[float] = None
    firstContentfulPaint: Optional[float] = None
    domInteractive: Optional[float] = None
    value: Optional[float] = None
    name: Optional[str] = None
    entryType: Optional[str] = None
    startTime: Optional[float] = None
    duration: Optional[float] = None


class SessionData(EventPayload):
    reason: Optional[str] = None
    timeSpent: Optional[float] = None
    duration: Optional[float] = None
    scrollDepth: Optional[float] = None


class VisibilityData(EventPayload):
    isVisible: Optional[bool] = None
    timeSpent: Optional[float] = None


class NetworkData(EventPayload):
    online: Optional[bool] = None
    connection: Optional[Dict[str, Any]] = None


class ConversionData(EventPayload):
    goalType: Optional[str] = None
    value: Optional[float] = None


class GenericData(EventPayload):
    """Custom and forward-compatible event types."""


PAYLOAD_VARIANTS: Dict[str, Type[EventPayload]] = {
    EventType.PAGE_VIEW: PageViewData,
    EventType.CLICK: InteractionData,
    EventType.MOUSE_CLICK: InteractionData,
    EventType.CONTEXT_MENU: InteractionData,
    EventType.SCROLL: InteractionData,
    EventType.MOUSE_MOVE: InteractionData,
    EventType.VIEWPORT_RESIZE: InteractionData,
    EventType.FORM_FOCUS: FormData,
    EventType.FORM_BLUR: FormData,
    EventType.FORM_CHANGE: FormData,
    EventType.FORM_SUBMIT: FormData,
    EventType.ERROR: ErrorData,
    EventType.PROMISE_REJECTION: ErrorData,
    EventType.PERFORMANCE: PerformanceData,
    EventType.RESOURCE_TIMING: PerformanceData,
    EventType.LARGEST_CONTENTFUL_PAINT: PerformanceData,
    EventType.FIRST_INPUT_DELAY: PerformanceData,
    EventType.SESSION_START: SessionData,
    EventType.SESSION_END: SessionData,
    EventType.USER_IDLE: SessionData,
    EventType.PAGE_EXIT: SessionData,
    EventType.VISIBILITY_CHANGE: VisibilityData,
    EventType.NETWORK_CHANGE: NetworkData,
    EventType.CONVERSION: ConversionData,
}


def payload_model_for(event_type: str) -> Type[EventPayload]:
    """Select the payload variant for an event type (custom_* and unknown → generic)."""
    return PAYLOAD_VARIANTS.get(event_type, GenericData)


def parse_event_data(event_type: str, data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Validate ``data`` against the variant for ``event_type``.

    Raises:
        pydantic.ValidationError: If a known field has the wrong type or the
            payload carries too many custom fields
    """
    model = payload_model_for(event_type).model_validate(data or {})
    return model.model_dump(exclude_none=True)
