"""
Error classification and recovery for the playback session.

Every client error is counted before any decision is made. Non-fatal errors
get at most one recovery action and no retry loop; fatal errors tear the
session down and surface a single terminal error. Nothing here raises.
"""

import logging
from typing import Any, Callable, Dict, Optional, Union

from .models import (
    ClientErrorSignal,
    ErrorCategory,
    ErrorEvent,
    EventType,
    MediaErrorSignal,
    RecoveryAction,
    RecoveryOutcome,
)
from .source import StreamingClient
from .state import StreamSession

logger = logging.getLogger(__name__)


class ErrorDetails:
    """Detail codes reported by the adaptive streaming client."""

    MANIFEST_LOAD_ERROR = "manifestLoadError"
    MANIFEST_LOAD_TIMEOUT = "manifestLoadTimeOut"
    MANIFEST_PARSING_ERROR = "manifestParsingError"
    FRAG_LOAD_ERROR = "fragLoadError"
    FRAG_LOAD_TIMEOUT = "fragLoadTimeOut"
    BUFFER_STALLED_ERROR = "bufferStalledError"
    BUFFER_FULL_ERROR = "bufferFullError"


MANIFEST_LOAD_DETAILS = frozenset({
    ErrorDetails.MANIFEST_LOAD_ERROR,
    ErrorDetails.MANIFEST_LOAD_TIMEOUT,
    ErrorDetails.MANIFEST_PARSING_ERROR,
})

FRAGMENT_LOAD_DETAILS = frozenset({
    ErrorDetails.FRAG_LOAD_ERROR,
    ErrorDetails.FRAG_LOAD_TIMEOUT,
})

# HTMLMediaElement MediaError codes
MEDIA_ELEMENT_ERRORS = {
    1: ("MEDIA_ERR_ABORTED", ErrorCategory.OTHER),
    2: ("MEDIA_ERR_NETWORK", ErrorCategory.NETWORK),
    3: ("MEDIA_ERR_DECODE", ErrorCategory.MEDIA),
    4: ("MEDIA_ERR_SRC_NOT_SUPPORTED", ErrorCategory.MUX),
}

ErrorInput = Union[ClientErrorSignal, MediaErrorSignal, ErrorEvent]


def classify_error(error: ErrorInput) -> ErrorEvent:
    """Turn a raw client or element error into a categorized ErrorEvent."""
    if isinstance(error, ErrorEvent):
        return error
    if isinstance(error, MediaErrorSignal):
        details, category = MEDIA_ELEMENT_ERRORS.get(
            error.code, ("MEDIA_ERR_UNKNOWN", ErrorCategory.OTHER))
        # The element has no recovery hooks; its errors always end playback
        return ErrorEvent(category=category, details=details, fatal=True, reason=error.message)
    return ErrorEvent(
        category=ErrorCategory.from_type(error.type),
        details=error.details,
        fatal=error.fatal,
        reason=error.reason,
    )


def recovery_action_for(event: ErrorEvent) -> RecoveryAction:
    if event.fatal:
        return RecoveryAction.TEARDOWN
    if event.category == ErrorCategory.NETWORK:
        if event.details in FRAGMENT_LOAD_DETAILS:
            return RecoveryAction.RESUME_LOAD
        # Manifest failures and other network details are only surfaced
        return RecoveryAction.NONE
    if event.category == ErrorCategory.MEDIA:
        return RecoveryAction.RECOVER_MEDIA
    return RecoveryAction.NONE


class RecoveryController:
    def __init__(
        self,
        session: StreamSession,
        client: Optional[StreamingClient],
        on_fatal: Callable[[ErrorEvent], None],
        publish: Callable[[EventType, Dict[str, Any]], None],
    ):
        self.session = session
        self.client = client
        self._on_fatal = on_fatal
        self._publish = publish

    def handle_error(self, error: ErrorInput) -> RecoveryOutcome:
        """Classify one error and apply at most one recovery action."""
        try:
            event = classify_error(error)
        except Exception as e:
            logger.error(f"Failed to classify error {error!r}: {e}")
            event = ErrorEvent(category=ErrorCategory.OTHER, fatal=bool(getattr(error, "fatal", False)))

        # Count first so the totals hold whatever recovery does next
        self.session.recovery_counters.record(event.category, event.fatal)
        action = recovery_action_for(event)
        outcome = RecoveryOutcome(
            category=event.category,
            details=event.details,
            fatal=event.fatal,
            action=action,
        )

        if event.fatal:
            logger.error(
                f"Fatal {event.category.value} error ({event.details}) in session {self.session.session_id}, tearing down")
            try:
                self._on_fatal(event)
            except Exception as e:
                logger.error(f"Error tearing down session {self.session.session_id}: {e}")
            return outcome

        if action == RecoveryAction.NONE:
            outcome.advisory = f"{event.category.value} error: {event.details or 'unspecified'}"
            logger.warning(f"Non-recoverable {event.category.value} error surfaced: {event.details}")
            self._publish(EventType.ADVISORY, self._event_data(event, outcome))
            return outcome

        if self.client is None:
            outcome.advisory = f"No streaming client available for {action.value}"
            logger.warning(f"Cannot run {action.value} for {event.details}: no streaming client")
            self._publish(EventType.ADVISORY, self._event_data(event, outcome))
            return outcome

        outcome.attempted = True
        try:
            self._run(action)
            outcome.succeeded = True
            logger.info(f"Recovery {action.value} issued for {event.category.value} error {event.details}")
            self._publish(EventType.RECOVERY_ATTEMPTED, self._event_data(event, outcome))
        except Exception as e:
            # Never re-enter classification from here
            outcome.advisory = f"Recovery {action.value} failed: {e}"
            logger.error(f"Recovery {action.value} failed for {event.details}: {e}")
            self._publish(EventType.ADVISORY, self._event_data(event, outcome))
        return outcome

    def _run(self, action: RecoveryAction):
        if action == RecoveryAction.RESUME_LOAD:
            self.client.start_load()
        elif action == RecoveryAction.RECOVER_MEDIA:
            self.client.recover_media_error()

    @staticmethod
    def _event_data(event: ErrorEvent, outcome: RecoveryOutcome) -> Dict[str, Any]:
        return {
            "category": event.category.value,
            "details": event.details,
            "reason": event.reason,
            "action": outcome.action.value,
            "succeeded": outcome.succeeded,
            "advisory": outcome.advisory,
        }
