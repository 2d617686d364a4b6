"""Infrastructure shared by the navigation services."""

__all__ = [
    "settings",
    "setup_otel",
    "setup_logging",
    "get_logger",
    "KafkaProducer",
    "KafkaConsumer",
    "prepare_schema",
]
