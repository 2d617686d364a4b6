from __future__ import annotations

import asyncio
from functools import lru_cache
from typing import TYPE_CHECKING

from pydantic_settings import BaseSettings

from src.common.settings import SettingsMeta

from .session import SessionLimits
from .tracker import TrackingConfig

if TYPE_CHECKING:
    from .orchestrator import NavigationOrchestrator, OrchestratorOptions


class Settings(BaseSettings, metaclass=SettingsMeta):
    kafka_brokers: str | None = None
    fixes_topic: str = "navigation.fixes"
    progress_topic: str = "navigation.progress"
    voice_topic: str = "navigation.voice"
    consumer_group: str = "navigation"

    google_maps_api_key: str | None = None
    google_maps_language: str = "ru"
    google_maps_region: str | None = "ru"
    google_maps_timeout: float = 5.0
    avoid_tolls: bool = False
    avoid_highways: bool = False
    avoid_ferries: bool = False

    arrival_threshold_m: float = 30.0
    off_route_threshold_m: float = 50.0
    next_turn_alert_m: float = 200.0
    step_switch_margin_m: float = 15.0
    lookahead_steps: int = 3
    eta_min_speed_kmh: float = 5.0
    eta_correction_factor: float = 1.15
    max_plausible_speed_kmh: float = 250.0
    max_mapping_distance_m: float = 2_000.0

    off_route_confirmations: int = 3
    auto_recalculate: bool = True
    publish_min_delta_m: float = 25.0
    location_timeout_s: float = 60.0
    location_check_interval_s: float | None = 5.0
    session_retention_s: float = 60.0

    persist_sessions: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()


def tracking_config(settings: Settings) -> TrackingConfig:
    return TrackingConfig(
        arrival_threshold_m=settings.arrival_threshold_m,
        off_route_threshold_m=settings.off_route_threshold_m,
        next_turn_alert_m=settings.next_turn_alert_m,
        step_switch_margin_m=settings.step_switch_margin_m,
        lookahead_steps=settings.lookahead_steps,
        eta_min_speed_kmh=settings.eta_min_speed_kmh,
        eta_correction_factor=settings.eta_correction_factor,
    )


def orchestrator_options(settings: Settings) -> "OrchestratorOptions":
    from .orchestrator import OrchestratorOptions

    return OrchestratorOptions(
        config=tracking_config(settings),
        limits=SessionLimits(
            max_plausible_speed_kmh=settings.max_plausible_speed_kmh,
            max_mapping_distance_m=settings.max_mapping_distance_m,
        ),
        off_route_confirmations=settings.off_route_confirmations,
        auto_recalculate=settings.auto_recalculate,
        publish_min_delta_m=settings.publish_min_delta_m,
        location_timeout_s=settings.location_timeout_s,
        location_check_interval_s=settings.location_check_interval_s,
    )


_orchestrators: dict[str, "NavigationOrchestrator"] = {}
_retirements: set[asyncio.Task[None]] = set()


def register_orchestrator(orchestrator: "NavigationOrchestrator") -> None:
    _orchestrators[orchestrator.session.id] = orchestrator


def get_orchestrator(session_id: str) -> "NavigationOrchestrator | None":
    return _orchestrators.get(session_id)


def drop_orchestrator(session_id: str) -> "NavigationOrchestrator | None":
    return _orchestrators.pop(session_id, None)


async def retire_orchestrator(
    orchestrator: "NavigationOrchestrator", delay_s: float = 0.0
) -> None:
    """Forget a finished session, keeping it readable for ``delay_s`` seconds."""

    if delay_s <= 0:
        await _retire(orchestrator)
        return
    task = asyncio.create_task(_retire(orchestrator, delay_s))
    _retirements.add(task)
    task.add_done_callback(_retirements.discard)


async def _retire(orchestrator: "NavigationOrchestrator", delay_s: float = 0.0) -> None:
    if delay_s > 0:
        await asyncio.sleep(delay_s)
    if _orchestrators.get(orchestrator.session.id) is orchestrator:
        drop_orchestrator(orchestrator.session.id)
    await orchestrator.close()


async def close_orchestrators() -> None:
    for task in list(_retirements):
        task.cancel()
    await asyncio.gather(*_retirements, return_exceptions=True)
    while _orchestrators:
        _, orchestrator = _orchestrators.popitem()
        await orchestrator.close()
