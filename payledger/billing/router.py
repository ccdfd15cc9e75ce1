"""Handler registry keyed by event class."""
import enum
import logging
from typing import Callable, Dict, Optional, Type

from payledger.observability import log_event

logger = logging.getLogger(__name__)


class DispatchOutcome(str, enum.Enum):
    HANDLED = "handled"
    IGNORED = "ignored"


Handler = Callable[[object], Optional[DispatchOutcome]]

_REGISTRY: Dict[Type, Handler] = {}


def handles(*event_classes: Type):
    """Register the decorated function for one or more event classes."""
    def decorator(fn: Handler) -> Handler:
        for cls in event_classes:
            if cls in _REGISTRY and _REGISTRY[cls] is not fn:
                raise ValueError(f"Handler already registered for {cls.__name__}")
            _REGISTRY[cls] = fn
        return fn
    return decorator


def handler_for(event) -> Optional[Handler]:
    # Import the handler modules so their @handles decorators run
    from . import handlers  # noqa: F401
    return _REGISTRY.get(type(event))


def dispatch(event) -> DispatchOutcome:
    """Run the registered handler. Exceptions propagate to the caller."""
    handler = handler_for(event)
    if handler is None:
        log_event("webhook_ignored", event_id=event.event_id, event_type=event.event_type)
        return DispatchOutcome.IGNORED
    outcome = handler(event) or DispatchOutcome.HANDLED
    if outcome is DispatchOutcome.IGNORED:
        log_event("webhook_noop", event_id=event.event_id, event_type=event.event_type)
    return outcome
