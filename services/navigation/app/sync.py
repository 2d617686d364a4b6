"""Kafka-backed collaborators: group progress and voice announcements."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from src.common.kafka import KafkaProducer

from . import deps
from .announcements import NavigationEvent
from .route import Coordinate

logger = logging.getLogger(__name__)


class _LazyProducer:
    """Start the shared producer on first use; one start for all senders."""

    def __init__(self, producer: KafkaProducer) -> None:
        self._producer = producer
        self._lock = asyncio.Lock()

    async def send(self, topic: str, key: str, value: dict) -> None:
        if not self._producer.started:
            async with self._lock:
                await self._producer.start()
        await self._producer.send(topic, key, value)

    async def stop(self) -> None:
        await self._producer.stop()


class KafkaProgressPublisher:
    """Publishes rider progress for group ride followers."""

    def __init__(self, producer: _LazyProducer, topic: str) -> None:
        self._producer = producer
        self._topic = topic

    async def publish_progress(
        self,
        session_id: str,
        group_session_id: str,
        step_index: int,
        location: Coordinate,
        eta_seconds: int,
        remaining_distance_m: float,
    ) -> None:
        payload = {
            "session_id": session_id,
            "group_session_id": group_session_id,
            "step_index": step_index,
            "location": location.to_dict(),
            "eta_seconds": eta_seconds,
            "remaining_distance_m": round(remaining_distance_m, 1),
            "updated_at": datetime.now(timezone.utc),
        }
        try:
            await self._producer.send(self._topic, session_id, payload)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to publish progress for session %s", session_id)


class KafkaAnnouncementSink:
    """Hands voice cues to the text-to-speech pipeline."""

    def __init__(self, producer: _LazyProducer, topic: str) -> None:
        self._producer = producer
        self._topic = topic

    async def announce(self, session_id: str, event: NavigationEvent, text: str) -> None:
        payload = {"session_id": session_id, "text": text, **event.to_dict()}
        try:
            await self._producer.send(self._topic, session_id, payload)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to send announcement for session %s", session_id)


_shared: _LazyProducer | None = None


def get_producer(settings: deps.Settings) -> _LazyProducer | None:
    global _shared
    if not settings.kafka_brokers:
        return None
    if _shared is None:
        _shared = _LazyProducer(KafkaProducer(settings.kafka_brokers))
    return _shared


def get_publisher(settings: deps.Settings) -> KafkaProgressPublisher | None:
    producer = get_producer(settings)
    if producer is None:
        return None
    return KafkaProgressPublisher(producer, settings.progress_topic)


def get_announcer(settings: deps.Settings) -> KafkaAnnouncementSink | None:
    producer = get_producer(settings)
    if producer is None:
        return None
    return KafkaAnnouncementSink(producer, settings.voice_topic)


async def close_producer() -> None:
    global _shared
    if _shared is not None:
        await _shared.stop()
    _shared = None
