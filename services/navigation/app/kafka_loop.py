import asyncio
import logging
from datetime import datetime, timezone

from src.common.kafka import KafkaConsumer, KafkaMessage
from src.common.metrics import JOB_DURATION

from . import deps
from .route import Coordinate
from .session import LocationFix

logger = logging.getLogger(__name__)


def _parse_fix(payload: dict) -> tuple[str, LocationFix]:
    session_id = str(payload["session_id"])
    raw_ts = payload.get("timestamp")
    if raw_ts is None:
        timestamp = datetime.now(timezone.utc)
    elif isinstance(raw_ts, (int, float)):
        timestamp = datetime.fromtimestamp(raw_ts, tz=timezone.utc)
    else:
        timestamp = datetime.fromisoformat(str(raw_ts))
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
    fix = LocationFix(
        coordinate=Coordinate(float(payload["lat"]), float(payload["lon"])),
        timestamp=timestamp,
        speed_kmh=float(payload.get("speed_kmh", 0.0)),
    )
    return session_id, fix


async def _handle_message(message: KafkaMessage) -> None:
    start = asyncio.get_event_loop().time()
    if not isinstance(message.value, dict):
        logger.warning("Skipping malformed fix at offset %s", message.offset)
        return
    try:
        session_id, fix = _parse_fix(message.value)
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Skipping malformed fix at offset %s: %s", message.offset, exc)
        return
    orchestrator = deps.get_orchestrator(session_id)
    if orchestrator is None:
        logger.debug("Fix for unknown session %s ignored", session_id)
        return
    await orchestrator.submit(fix)
    duration = asyncio.get_event_loop().time() - start
    JOB_DURATION.labels("navigation", "handle_fix").observe(duration)


async def _consume(settings: deps.Settings, brokers: str) -> None:
    consumer = KafkaConsumer(brokers, settings.fixes_topic, settings.consumer_group)
    logger.info("Starting Kafka consumer loop")
    async with consumer:
        logger.info("Kafka consumer loop started")
        async for message in consumer:
            await _handle_message(message)


async def start_kafka_consumer(settings: deps.Settings) -> asyncio.Task | None:
    brokers = settings.kafka_brokers
    if not brokers:
        logger.info("Kafka configuration missing. Consumer loop not started")
        return None

    async def runner() -> None:
        try:
            await _consume(settings, brokers)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("Kafka consumer loop terminated")

    return asyncio.create_task(runner())
