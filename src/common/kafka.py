"""Kafka helpers built around aiokafka."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Final

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from opentelemetry import trace


def _json_default(value: Any) -> Any:
    # Датчики и сессии отдают datetime; сериализуем в ISO 8601.
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_value(value: Any) -> bytes:
    """Сериализовать значение сообщения в компактный JSON."""

    if value is None:
        return b"null"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    return json.dumps(
        value, ensure_ascii=False, separators=(",", ":"), default=_json_default
    ).encode("utf-8")


def decode_value(data: bytes | None) -> Any:
    """Разобрать JSON; не-JSON полезную нагрузку вернуть как есть."""

    if not data:
        return None
    try:
        return json.loads(data.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return data


@dataclass(frozen=True)
class KafkaMessage:
    """Decoded message handed to consumers."""

    topic: str
    key: Any
    value: Any
    offset: int


class KafkaProducer:
    """Kafka-продюсер с JSON-сериализацией и трассировкой."""

    __slots__ = ("_producer", "_started")

    _tracer = trace.get_tracer(__name__)
    _empty_bytes: Final[bytes] = b""

    def __init__(self, brokers: str, *, client_id: str = "navigation") -> None:
        self._producer = AIOKafkaProducer(
            bootstrap_servers=brokers.split(","),
            client_id=client_id,
            value_serializer=encode_value,
            key_serializer=self._serialize_key,
        )
        self._started = False

    @classmethod
    def _serialize_key(cls, value: Any) -> bytes:
        # Ключом обычно служит id сессии; None допустим.
        if value is None:
            return cls._empty_bytes
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        return str(value).encode("utf-8")

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Запускаем клиент aiokafka только один раз."""

        if self._started:
            return
        await self._producer.start()
        self._started = True

    async def stop(self) -> None:
        """Останавливаем продюсер, если он активен."""

        if not self._started:
            return
        await self._producer.stop()
        self._started = False

    async def send(self, topic: str, key: Any, value: Any) -> None:
        """Отправить сообщение и записать трассировку."""

        if not self._started:
            raise RuntimeError("KafkaProducer must be started before sending messages")
        with self._tracer.start_as_current_span(f"event.produce:{topic}"):
            await self._producer.send_and_wait(topic, value=value, key=key)

    async def __aenter__(self) -> "KafkaProducer":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()


class KafkaConsumer:
    """Kafka-консьюмер, отдающий уже декодированные сообщения."""

    __slots__ = ("_consumer", "_started")

    def __init__(
        self,
        brokers: str,
        topic: str,
        group_id: str,
        *,
        auto_offset_reset: str = "latest",
    ) -> None:
        # Старые GPS-точки бесполезны, поэтому по умолчанию читаем с конца.
        self._consumer = AIOKafkaConsumer(
            topic,
            bootstrap_servers=brokers.split(","),
            group_id=group_id,
            auto_offset_reset=auto_offset_reset,
            value_deserializer=decode_value,
            key_deserializer=decode_value,
        )
        self._started = False

    async def start(self) -> None:
        """Запускаем чтение из Kafka только при первом вызове."""

        if self._started:
            return
        await self._consumer.start()
        self._started = True

    async def stop(self) -> None:
        """Безопасно остановить консьюмера."""

        if not self._started:
            return
        await self._consumer.stop()
        self._started = False

    async def __aenter__(self) -> "KafkaConsumer":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    def __aiter__(self) -> AsyncIterator[KafkaMessage]:
        if not self._started:
            raise RuntimeError("KafkaConsumer must be started before iteration")
        return self._consume()

    async def _consume(self) -> AsyncIterator[KafkaMessage]:
        async for msg in self._consumer:
            yield KafkaMessage(
                topic=msg.topic, key=msg.key, value=msg.value, offset=msg.offset
            )
