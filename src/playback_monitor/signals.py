"""
Typed signal routing.

Each signal kind has explicit handlers registered at wiring time. Dispatch
never raises: handler failures are logged and reported in the result.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from .models import MediaSignal

logger = logging.getLogger(__name__)

SignalHandler = Callable[[Any], Any]


@dataclass
class DispatchResult:
    kind: str
    handled: bool = False
    results: List[Any] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class SignalRouter:
    def __init__(self):
        self._handlers: Dict[str, List[SignalHandler]] = {}
        # Bumped by detach_all() so an in-flight dispatch stops early
        self._epoch = 0

    @property
    def attached(self) -> bool:
        return bool(self._handlers)

    def register(self, kind: str, handler: SignalHandler):
        """Register a handler for one signal kind."""
        self._handlers.setdefault(kind, []).append(handler)

    def unregister(self, kind: str, handler: SignalHandler) -> bool:
        handlers = self._handlers.get(kind, [])
        if handler not in handlers:
            return False
        handlers.remove(handler)
        if not handlers:
            del self._handlers[kind]
        return True

    def detach_all(self):
        """Drop every handler; later signals are ignored."""
        self._handlers.clear()
        self._epoch += 1

    def dispatch(self, signal: MediaSignal) -> DispatchResult:
        handlers = list(self._handlers.get(signal.kind, ()))
        result = DispatchResult(kind=signal.kind, handled=bool(handlers))
        if not handlers:
            logger.debug(f"No handler registered for signal: {signal.kind}")
            return result

        epoch = self._epoch
        for handler in handlers:
            if self._epoch != epoch:
                logger.debug(f"Router detached while dispatching {signal.kind}, skipping remaining handlers")
                break
            name = getattr(handler, "__name__", repr(handler))
            try:
                outcome = handler(signal)
                if outcome is not None:
                    result.results.append(outcome)
            except Exception as e:
                logger.error(f"Error in {signal.kind} handler {name}: {e}")
                result.errors.append(f"{name}: {e}")
        return result
