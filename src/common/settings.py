"""Shared settings for the navigation services, loaded from the environment."""

from __future__ import annotations

import logging

from pydantic import Field
from pydantic_settings import BaseSettings
from pydantic._internal._model_construction import ModelMetaclass


class SettingsMeta(ModelMetaclass):
    """Metaclass to allow overriding fields without type annotations."""

    def __new__(mcls, name, bases, namespace, **kwargs):  # type: ignore[override]
        annotations = dict(namespace.get("__annotations__", {}))
        for base in bases:
            for field, ann in getattr(base, "__annotations__", {}).items():
                if field in namespace and field not in annotations:
                    annotations[field] = ann
        namespace["__annotations__"] = annotations
        return super().__new__(mcls, name, bases, namespace, **kwargs)


class Settings(BaseSettings, metaclass=SettingsMeta):
    """Infrastructure settings shared by every service in the repository."""

    # Defaults keep imports working in tests; deployments set the env vars.
    kafka_brokers: str | None = Field(default=None, alias="KAFKA_BROKERS")
    otel_exporter_otlp_endpoint: str | None = Field(
        default=None, alias="OTEL_EXPORTER_OTLP_ENDPOINT"
    )
    postgres_dsn: str = Field(
        "sqlite+aiosqlite:///./navigation.db", alias="POSTGRES_DSN"
    )
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
        "case_sensitive": False,
        "populate_by_name": True,
    }

    @property
    def log_level_value(self) -> int:
        """Numeric logging level, falling back to INFO on unknown names."""

        value = logging.getLevelName(self.log_level.upper())
        return value if isinstance(value, int) else logging.INFO


settings = Settings()
"""Singleton instance of :class:`Settings`."""
