"""
Event Stream Consumer

Purpose
-------
Read inbound presence and role events from Redis Streams through a consumer
group and hand each one to the EventDispatcher.

Consumes
--------
Entries with two fields:
- kind    : player_connect | player_disconnect | player_server_switch | player_role_changed
- payload : JSON object (see presence.modules.events.types)

Responsibilities
----------------
- Create the consumer group on each stream (MKSTREAM) if missing
- Re-process this consumer's pending entries on start
- XREADGROUP new entries, decode, dispatch, XACK
- Acknowledge every entry, including undecodable ones and ones whose
  handler failed
- Track counters (received, handled, failed, skipped, undecodable)

Configuration Keys
------------------
- Config.EVENT_STREAM_KEYS / EVENT_CONSUMER_GROUP / EVENT_CONSUMER_NAME
- presence.consumer.batch_size            : int (default 50)
- presence.consumer.block_ms              : int (default 2000)
- presence.consumer.error_backoff_seconds : float (default 1.0)

Lifecycle Notes
---------------
`stop()` stops reading. An entry already being handled finishes and is
acknowledged first. Entries read but not yet handled stay pending in the
group and are picked up on the next start.

Example Usage
-------------
>>> consumer = EventStreamConsumer(dispatcher)
>>> await consumer.start()
>>> status = consumer.get_status()
>>> await consumer.stop()
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from redis.asyncio.client import Redis as AsyncRedis
from redis.exceptions import RedisError, ResponseError

from presence.core.config.config import Config
from presence.core.config.config_manager import ConfigManager
from presence.core.exceptions import EventStreamError
from presence.core.logging.logger import get_logger
from presence.core.redis.service import RedisService
from presence.modules.events.dispatcher import DispatchResult, EventDispatcher
from presence.modules.events.types import UnknownEventKindError, decode_event
from presence.modules.shared.exceptions import ValidationError

logger = get_logger(__name__)

StreamEntry = Tuple[str, Mapping[str, Any]]


def entry_timestamp(entry_id: str) -> datetime:
    """Delivery time encoded in a stream entry ID (`<ms>-<seq>`)."""
    millis = int(entry_id.split("-", 1)[0])
    try:
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (OverflowError, OSError) as exc:
        raise ValueError(f"entry id {entry_id!r} is outside the datetime range") from exc


class EventStreamConsumer:
    def __init__(
        self,
        dispatcher: EventDispatcher,
        client: Optional[AsyncRedis] = None,
        *,
        streams: Optional[Sequence[str]] = None,
        group: Optional[str] = None,
        consumer_name: Optional[str] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._client = client
        self._streams: List[str] = list(streams or Config.EVENT_STREAM_KEYS)
        self._group = group or Config.EVENT_CONSUMER_GROUP
        self._consumer_name = consumer_name or Config.EVENT_CONSUMER_NAME

        self._batch_size = ConfigManager.get_int("presence.consumer.batch_size", 50)
        self._block_ms = ConfigManager.get_int("presence.consumer.block_ms", 2000)
        self._error_backoff = ConfigManager.get_float("presence.consumer.error_backoff_seconds", 1.0)

        self._is_running: bool = False
        self._processing: bool = False
        self._task: Optional[asyncio.Task[None]] = None

        # Metrics
        self._events_received: int = 0
        self._events_handled: int = 0
        self._events_failed: int = 0
        self._events_skipped: int = 0
        self._events_undecodable: int = 0
        self._read_errors: int = 0

        logger.info(
            "EventStreamConsumer initialized",
            extra={
                "streams": self._streams,
                "group": self._group,
                "consumer_name": self._consumer_name,
                "batch_size": self._batch_size,
                "block_ms": self._block_ms,
            },
        )

    @property
    def client(self) -> AsyncRedis:
        if self._client is None:
            self._client = RedisService.get_client()
        return self._client

    @property
    def is_running(self) -> bool:
        return self._is_running

    # ═══════════════════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════

    async def start(self) -> None:
        if self._is_running:
            logger.warning("EventStreamConsumer already running")
            return

        await self._ensure_groups()
        self._is_running = True
        await self._drain_pending()
        self._task = asyncio.create_task(self._run(), name="presence-event-consumer")
        self._task.add_done_callback(self._on_task_done)
        logger.info("EventStreamConsumer started")

    def _on_task_done(self, task: "asyncio.Task[None]") -> None:
        if task.cancelled() or task.exception() is None:
            return
        self._is_running = False
        exc = task.exception()
        logger.critical(
            "Event stream read loop died; no further events will be consumed",
            extra={"error": str(exc), "error_type": type(exc).__name__},
            exc_info=exc,
        )

    async def stop(self) -> None:
        """Stop reading; let an in-flight entry finish and be acknowledged."""
        if not self._is_running:
            return

        self._is_running = False
        task = self._task
        self._task = None

        if task is not None:
            if not self._processing:
                # Blocked in XREADGROUP; nothing is in hand
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        logger.info("EventStreamConsumer stopped", extra=self.get_status())

    async def _ensure_groups(self) -> None:
        for stream in self._streams:
            try:
                await self.client.xgroup_create(name=stream, groupname=self._group, id="0", mkstream=True)
                logger.info("Created consumer group", extra={"stream": stream, "group": self._group})
            except ResponseError as exc:
                if "BUSYGROUP" not in str(exc):
                    raise EventStreamError("xgroup_create", stream, exc) from exc

    # ═══════════════════════════════════════════════════════════════════════
    # READ LOOP
    # ═══════════════════════════════════════════════════════════════════════

    async def _drain_pending(self) -> None:
        """Handle entries delivered to this consumer earlier but never acknowledged."""
        cursors = {stream: "0" for stream in self._streams}
        while self._is_running and cursors:
            batches = await self._read(cursors, block=None)
            for stream, entries in batches:
                if entries:
                    cursors[stream] = entries[-1][0]
                else:
                    cursors.pop(stream, None)
            if not any(entries for _, entries in batches):
                return
            await self._handle_batches(batches)

    async def _run(self) -> None:
        while self._is_running:
            try:
                batches = await self._read(
                    {stream: ">" for stream in self._streams}, block=self._block_ms
                )
            except EventStreamError as exc:
                self._read_errors += 1
                logger.error(
                    "Failed to read event stream; backing off",
                    extra={
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "backoff_seconds": self._error_backoff,
                    },
                )
                await asyncio.sleep(self._error_backoff)
                continue

            await self._handle_batches(batches)

    async def _read(
        self,
        cursors: Mapping[str, str],
        block: Optional[int],
    ) -> List[Tuple[str, List[StreamEntry]]]:
        try:
            response = await self.client.xreadgroup(
                groupname=self._group,
                consumername=self._consumer_name,
                streams=dict(cursors),
                count=self._batch_size,
                block=block,
            )
        except RedisError as exc:
            raise EventStreamError("xreadgroup", ",".join(self._streams), exc) from exc
        return [(stream, list(entries)) for stream, entries in (response or [])]

    async def _handle_batches(self, batches: List[Tuple[str, List[StreamEntry]]]) -> None:
        for stream, entries in batches:
            for entry_id, fields in entries:
                if not self._is_running:
                    return
                self._processing = True
                try:
                    await self.handle_entry(stream, entry_id, fields)
                except Exception as exc:
                    # Entry is already acked; one bad entry must not end the read loop
                    self._events_failed += 1
                    logger.error(
                        "Unexpected error while handling stream entry",
                        extra={
                            "stream": stream,
                            "entry_id": entry_id,
                            "error": str(exc),
                            "error_type": type(exc).__name__,
                        },
                        exc_info=True,
                    )
                finally:
                    self._processing = False

    # ═══════════════════════════════════════════════════════════════════════
    # ENTRY HANDLING
    # ═══════════════════════════════════════════════════════════════════════

    async def handle_entry(self, stream: str, entry_id: str, fields: Optional[Mapping[str, Any]]) -> None:
        """Decode, dispatch and acknowledge a single stream entry."""
        self._events_received += 1

        try:
            await self._decode_and_dispatch(stream, entry_id, fields or {})
        finally:
            await self._ack(stream, entry_id)

    async def _decode_and_dispatch(self, stream: str, entry_id: str, fields: Mapping[str, Any]) -> None:
        kind = fields.get("kind")
        try:
            payload = json.loads(fields.get("payload") or "{}")
            event = decode_event(kind, payload, entry_timestamp(entry_id))
        except UnknownEventKindError:
            self._events_skipped += 1
            logger.warning(
                "Unknown event kind; skipping",
                extra={"stream": stream, "entry_id": entry_id, "kind": kind},
            )
            return
        except (ValueError, TypeError, ValidationError) as exc:
            # json.JSONDecodeError is a ValueError
            self._events_undecodable += 1
            logger.warning(
                "Undecodable event; skipping",
                extra={
                    "stream": stream,
                    "entry_id": entry_id,
                    "kind": kind,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return

        result = await self._dispatcher.dispatch(event)
        if result is DispatchResult.HANDLED:
            self._events_handled += 1
        elif result is DispatchResult.FAILED:
            self._events_failed += 1
        else:
            self._events_skipped += 1

    async def _ack(self, stream: str, entry_id: str) -> None:
        try:
            await self.client.xack(stream, self._group, entry_id)
        except RedisError as exc:
            logger.error(
                "Failed to acknowledge stream entry",
                extra={
                    "stream": stream,
                    "entry_id": entry_id,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )

    # ═══════════════════════════════════════════════════════════════════════
    # STATUS
    # ═══════════════════════════════════════════════════════════════════════

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self._is_running,
            "streams": list(self._streams),
            "group": self._group,
            "consumer_name": self._consumer_name,
            "events_received": self._events_received,
            "events_handled": self._events_handled,
            "events_failed": self._events_failed,
            "events_skipped": self._events_skipped,
            "events_undecodable": self._events_undecodable,
            "read_errors": self._read_errors,
        }
