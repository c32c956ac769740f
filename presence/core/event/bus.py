"""
EventBus: in-process async pub/sub for presence and badge state changes.

Listeners subscribe to an exact name ("badge.added"), a prefix pattern
("badge.*") or "*". On publish they run by tier:

    CRITICAL, HIGH   one at a time, awaited, each under its own timeout
    NORMAL           concurrently, awaited
    LOW              background tasks; `drain()` waits for them

A listener that raises or times out is logged and counted; the publisher
and the other listeners are unaffected. Single event loop only.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import Counter
from typing import Any, Optional

from presence.core.config.config_manager import ConfigManager
from presence.core.event.context import event_log_context
from presence.core.event.types import (
    CallbackType,
    EventListener,
    EventPayload,
    ListenerPriority,
)
from presence.core.logging.logger import get_logger

logger = get_logger(__name__)


class EventBus:
    """
    Examples
    --------
    >>> bus = EventBus()
    >>> bus.subscribe("badge.*", on_badge_change, priority=ListenerPriority.LOW)
    >>> await bus.publish("badge.added", {"player_id": pid, "badge_id": "vip"})
    """

    def __init__(
        self,
        *,
        critical_timeout_seconds: Optional[float] = None,
        high_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._listeners: dict[str, list[EventListener]] = {}
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._published: Counter[str] = Counter()
        self._errors: Counter[str] = Counter()

        self._critical_timeout = self._load_timeout(
            "core.event.listener_timeout.critical_seconds", critical_timeout_seconds, 5.0
        )
        self._high_timeout = self._load_timeout(
            "core.event.listener_timeout.high_seconds", high_timeout_seconds, 5.0
        )

        logger.debug(
            "EventBus initialized",
            extra={
                "critical_timeout_seconds": self._critical_timeout,
                "high_timeout_seconds": self._high_timeout,
            },
        )

    @staticmethod
    def _load_timeout(key: str, override: Optional[float], default: float) -> float:
        if override is not None:
            return float(override)
        return ConfigManager.get_float(key, default)

    @staticmethod
    def _validate_callback_signature(callback: CallbackType) -> None:
        try:
            sig = inspect.signature(callback)
        except (TypeError, ValueError):
            # Built-ins may not expose a signature
            return

        params = list(sig.parameters.values())
        if len(params) != 1:
            callback_name = getattr(callback, "__qualname__", None) or repr(callback)
            raise ValueError(
                f"Event listener must accept exactly 1 parameter (EventPayload), "
                f"got {len(params)} parameters for '{callback_name}'"
            )

    # ------------------------------------------------------------------ #
    # Subscription API
    # ------------------------------------------------------------------ #

    def subscribe(
        self,
        event_name: str,
        callback: CallbackType,
        *,
        priority: ListenerPriority = ListenerPriority.NORMAL,
        identifier: Optional[str] = None,
        once: bool = False,
    ) -> str:
        """
        Subscribe a callback to an event name or "prefix.*" pattern.

        Returns the listener identifier. Re-subscribing the same identifier
        under the same name is ignored with a warning.
        """
        self._validate_callback_signature(callback)

        listener = EventListener.from_callback(
            event_name=event_name,
            callback=callback,
            priority=priority,
            identifier=identifier,
            once=once,
        )

        bucket = self._listeners.setdefault(event_name, [])
        if any(existing.identifier == listener.identifier for existing in bucket):
            logger.warning(
                "EventBus: duplicate listener prevented",
                extra={"event_name": event_name, "listener_id": listener.identifier},
            )
            return listener.identifier

        bucket.append(listener)
        bucket.sort(key=lambda item: item.priority.value)

        logger.debug(
            "EventBus: subscribed listener",
            extra={
                "event_name": event_name,
                "listener_id": listener.identifier,
                "priority": listener.priority.name,
            },
        )
        return listener.identifier

    def unsubscribe(self, event_name: str, identifier: str) -> bool:
        bucket = self._listeners.get(event_name, [])
        remaining = [lst for lst in bucket if lst.identifier != identifier]
        removed = len(remaining) != len(bucket)

        if remaining:
            self._listeners[event_name] = remaining
        else:
            self._listeners.pop(event_name, None)

        return removed

    def _extract_listeners(self, event_name: str) -> list[EventListener]:
        keys = [event_name]
        parts = event_name.split(".")
        for i in range(1, len(parts)):
            keys.append(".".join(parts[:i]) + ".*")
        keys.append("*")

        matched: list[EventListener] = []
        for key in keys:
            bucket = self._listeners.get(key)
            if not bucket:
                continue
            matched.extend(bucket)
            if any(lst.once for lst in bucket):
                kept = [lst for lst in bucket if not lst.once]
                if kept:
                    self._listeners[key] = kept
                else:
                    self._listeners.pop(key, None)

        matched.sort(key=lambda item: item.priority.value)
        return matched

    # ------------------------------------------------------------------ #
    # Publish API
    # ------------------------------------------------------------------ #

    async def publish(self, event_name: str, data: EventPayload) -> list[Any]:
        """
        Run every listener matching `event_name`, tier by tier.

        Returns the results of the awaited tiers in execution order; a
        listener that raised or timed out contributes None.
        """
        self._published[event_name] += 1
        with event_log_context(event_name, data):
            return await self._dispatch(event_name, data)

    async def _dispatch(self, event_name: str, data: EventPayload) -> list[Any]:
        listeners = self._extract_listeners(event_name)
        if not listeners:
            logger.debug("EventBus: no listeners for event", extra={"event_name": event_name})
            return []

        tiers: dict[ListenerPriority, list[EventListener]] = {}
        for listener in listeners:
            tiers.setdefault(listener.priority, []).append(listener)

        results: list[Any] = []
        for priority, timeout in (
            (ListenerPriority.CRITICAL, self._critical_timeout),
            (ListenerPriority.HIGH, self._high_timeout),
        ):
            for listener in tiers.get(priority, ()):
                results.append(await self._run_with_timeout(listener, event_name, data, timeout))

        normal = tiers.get(ListenerPriority.NORMAL, [])
        results.extend(
            await asyncio.gather(*(self._run_listener(lst, event_name, data) for lst in normal))
        )

        for listener in tiers.get(ListenerPriority.LOW, ()):
            self._spawn(self._run_listener(listener, event_name, data), f"{event_name}:{listener.identifier}")

        return results

    def _spawn(self, coro: Any, label: str) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=f"eventbus-low-{label}")
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _run_with_timeout(
        self,
        listener: EventListener,
        event_name: str,
        payload: EventPayload,
        timeout: float,
    ) -> Any:
        # Non-positive timeout disables the limit
        if timeout <= 0:
            return await self._run_listener(listener, event_name, payload)
        try:
            return await asyncio.wait_for(
                self._run_listener(listener, event_name, payload), timeout=timeout
            )
        except asyncio.TimeoutError:
            self._errors[event_name] += 1
            logger.error(
                "EventBus: listener exceeded its timeout",
                extra={"event_name": event_name, "listener_id": listener.identifier, "timeout_seconds": timeout},
            )
            return None

    async def _run_listener(
        self,
        listener: EventListener,
        event_name: str,
        payload: EventPayload,
    ) -> Any:
        try:
            result = listener.callback(payload)
            return await result if inspect.isawaitable(result) else result
        except Exception as exc:
            self._errors[event_name] += 1
            logger.error(
                "EventBus: listener raised",
                extra={
                    "event_name": event_name,
                    "listener_id": listener.identifier,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return None

    async def drain(self) -> None:
        """Wait for outstanding LOW-tier listener tasks."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def get_listener_count(self, event_name: Optional[str] = None) -> int:
        if event_name is None:
            return sum(len(bucket) for bucket in self._listeners.values())
        return len(self._listeners.get(event_name, []))

    def get_metrics_summary(self) -> dict[str, Any]:
        total = sum(self._published.values())
        errors = sum(self._errors.values())
        return {
            "total_events_published": total,
            "events_by_type": dict(self._published),
            "total_errors": errors,
            "errors_by_event": dict(self._errors),
            "total_listeners": self.get_listener_count(),
            "error_rate": round(errors / total * 100, 2) if total else 0.0,
        }
