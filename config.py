"""Tunable settings for the move orchestrator and their presets."""

from __future__ import annotations

import json
import os
import random
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

PRESET_ENV_VAR = "CHESSRELAY_PRESET"
DEFAULT_PRESET = "bullet"


class GamePhase(str, Enum):
    OPENING = "opening"
    MIDDLEGAME = "middlegame"
    ENDGAME = "endgame"


def phase_for_move_number(move_number: int) -> GamePhase:
    if move_number <= 8:
        return GamePhase.OPENING
    if move_number <= 25:
        return GamePhase.MIDDLEGAME
    return GamePhase.ENDGAME


def _default_outbound_fields() -> Dict[str, Any]:
    return {"b": 1, "l": 30, "a": 1}


@dataclass(slots=True, frozen=True)
class BotConfig:
    # Thinking time (milliseconds)
    thinking_time_min_ms: int = 300
    thinking_time_max_ms: int = 2500
    move_overhead_ms: int = 50

    # Depth settings
    base_depth: int = 11
    tactical_depth: int = 14
    endgame_depth: int = 13
    opening_depth: int = 10

    # Engine options
    multipv: int = 3
    contempt: int = 30

    # Delivery
    max_retries: int = 5
    backoff_schedule_ms: Tuple[int, ...] = (100, 300, 800, 2000, 5000)
    ack_delay_ms: int = 1000
    secondary_delay_ms: int = 200
    interaction_delay_ms: int = 100
    advance_delay_ms: int = 200
    consecutive_failure_threshold: int = 3

    # Engine supervision
    watchdog_interval_ms: int = 2000
    watchdog_timeout_ms: int = 10000
    restart_delay_ms: int = 500
    init_timeout_ms: int = 5000
    init_retry_delay_ms: int = 1000
    init_retries: int = 1
    stop_grace_ms: int = 1000

    # Game tracking
    calculate_delay_ms: int = 200
    game_update_timeout_ms: int = 15000

    variation_rate: float = 0.03
    log_level: str = "INFO"
    automation_enabled: bool = True
    outbound_fields: Dict[str, Any] = field(default_factory=_default_outbound_fields)

    def validate(self) -> "BotConfig":
        if self.thinking_time_min_ms < 0 or self.thinking_time_max_ms < self.thinking_time_min_ms:
            raise ValueError("thinking time range must satisfy 0 <= min <= max")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if not self.backoff_schedule_ms:
            raise ValueError("backoff_schedule_ms must not be empty")
        if any(later < earlier for earlier, later in zip(self.backoff_schedule_ms, self.backoff_schedule_ms[1:])):
            raise ValueError("backoff_schedule_ms must be non-decreasing")
        if not 0.0 <= self.variation_rate <= 1.0:
            raise ValueError("variation_rate must be within [0, 1]")
        if self.multipv < 1:
            raise ValueError("multipv must be at least 1")
        return self

    def backoff_delay_ms(self, retry_count: int) -> int:
        schedule = self.backoff_schedule_ms
        index = min(max(retry_count - 1, 0), len(schedule) - 1)
        return schedule[index]

    def depth_for(self, phase: GamePhase, tactical: bool = False) -> int:
        if phase == GamePhase.OPENING:
            return self.opening_depth
        if phase == GamePhase.ENDGAME:
            return self.endgame_depth
        if tactical:
            return self.tactical_depth
        return self.base_depth

    def thinking_time_ms(self, phase: GamePhase, rng: Optional[random.Random] = None) -> int:
        rng = rng or random
        variance = float(self.thinking_time_max_ms - self.thinking_time_min_ms)
        if phase == GamePhase.OPENING:
            variance *= 0.5
        elif phase == GamePhase.ENDGAME:
            variance *= 1.2
        return int(self.thinking_time_min_ms + rng.random() * variance)


class ConfigRegistry:
    PRESETS: Dict[str, BotConfig] = {
        "bullet": BotConfig(),
        "blitz": BotConfig(
            thinking_time_min_ms=800,
            thinking_time_max_ms=5000,
            base_depth=14,
            tactical_depth=17,
            endgame_depth=16,
            opening_depth=12,
            watchdog_timeout_ms=15000,
        ),
        "rapid": BotConfig(
            thinking_time_min_ms=2000,
            thinking_time_max_ms=12000,
            move_overhead_ms=100,
            base_depth=18,
            tactical_depth=22,
            endgame_depth=20,
            opening_depth=14,
            variation_rate=0.0,
            watchdog_timeout_ms=30000,
        ),
    }

    @classmethod
    def resolve(cls, preset: str) -> BotConfig:
        if preset not in cls.PRESETS:
            raise ValueError(f"Unknown config preset '{preset}'")
        return cls.PRESETS[preset]


def _coerce_overrides(overrides: Mapping[str, Any]) -> Dict[str, Any]:
    known = {f.name for f in fields(BotConfig)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
    coerced = dict(overrides)
    if "backoff_schedule_ms" in coerced:
        coerced["backoff_schedule_ms"] = tuple(int(v) for v in coerced["backoff_schedule_ms"])
    if "outbound_fields" in coerced:
        coerced["outbound_fields"] = dict(coerced["outbound_fields"])
    return coerced


def load_config(
    preset: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    path: Optional[Union[str, Path]] = None,
) -> BotConfig:
    """Resolve a preset, then apply JSON file overrides and explicit overrides.

    The preset defaults to the ``CHESSRELAY_PRESET`` environment variable and
    falls back to ``bullet``.
    """
    name = preset or os.environ.get(PRESET_ENV_VAR) or DEFAULT_PRESET
    config = ConfigRegistry.resolve(name)

    if path is not None:
        with Path(path).open("r", encoding="utf-8") as handle:
            file_overrides = json.load(handle)
        if not isinstance(file_overrides, dict):
            raise ValueError(f"Config file {path} must contain a JSON object")
        config = replace(config, **_coerce_overrides(file_overrides))

    if overrides:
        config = replace(config, **_coerce_overrides(overrides))

    return config.validate()
