"""
core/config.py — Typed configuration loader for OmniCore.

Loads config/omnicore.yaml and validates all values into typed dataclasses.
All downstream modules take these dataclasses; never read YAML directly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from core.constants import C

logger = logging.getLogger(__name__)

_ENV_VAR = "OMNICORE_CONFIG"


# ──────────────────────────────────────────────
# Dataclass hierarchy — mirrors omnicore.yaml
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class PipelineConfig:
    """Stage timing for the simulated pipeline."""

    stage_base_ms: float = C.STAGE_BASE_MS
    stage_jitter_ms: float = C.STAGE_JITTER_MS
    seed: Optional[int] = None


@dataclass(frozen=True)
class HistoryConfig:
    """Resolved-answer history settings."""

    capacity: int = C.HISTORY_CAPACITY


@dataclass(frozen=True)
class AnimationConfig:
    """Confidence display animation settings."""

    enabled: bool = True
    step: int = C.ANIMATION_STEP
    tick_ms: float = C.ANIMATION_TICK_MS


@dataclass(frozen=True)
class ConfidenceConfig:
    """Confidence band ladder thresholds (integer percentages)."""

    high_threshold: int = C.CONFIDENCE_HIGH
    medium_threshold: int = C.CONFIDENCE_MEDIUM
    review_threshold: int = C.CONFIDENCE_REVIEW


@dataclass(frozen=True)
class WebConfig:
    """FastAPI server bind settings."""

    host: str = "0.0.0.0"
    port: int = 7860


@dataclass(frozen=True)
class LoggingConfig:
    """Stderr mirror level for the structured logger."""

    level: str = "INFO"


@dataclass(frozen=True)
class OmniCoreConfig:
    """Root configuration object — single source of truth for all settings."""

    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    animation: AnimationConfig = field(default_factory=AnimationConfig)
    confidence: ConfidenceConfig = field(default_factory=ConfidenceConfig)
    web: WebConfig = field(default_factory=WebConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# ──────────────────────────────────────────────
# Loader
# ──────────────────────────────────────────────


def _merge(defaults: dict, overrides: dict) -> dict:
    """
    Deep-merge *overrides* into *defaults*, returning a new dict.

    Nested dicts are merged recursively; scalar values in overrides win.
    """
    result: dict = dict(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def _resolve_path(config_path: Path | str | None) -> Path | None:
    if config_path is not None:
        resolved = Path(config_path)
        if not resolved.exists():
            raise FileNotFoundError(f"Config file not found: {resolved}")
        return resolved
    if _ENV_VAR in os.environ:
        resolved = Path(os.environ[_ENV_VAR])
        if not resolved.exists():
            raise FileNotFoundError(f"{_ENV_VAR} points to missing file: {resolved}")
        return resolved
    # Auto-discover config/omnicore.yaml at the project root
    here = Path(__file__).resolve()
    for parent in (here.parent.parent, Path.cwd()):
        candidate = parent / "config" / "omnicore.yaml"
        if candidate.exists():
            return candidate
    return None


def load_config(
    config_path: Path | str | None = None,
    overrides: dict | None = None,
) -> OmniCoreConfig:
    """
    Load, validate, and return an OmniCoreConfig from a YAML file.

    The search order for the config file is:
    1. *config_path* argument (if provided)
    2. ``OMNICORE_CONFIG`` environment variable
    3. ``config/omnicore.yaml`` at the project root or working directory
    4. Built-in defaults (no file required)

    Args:
        config_path: Optional path to an ``omnicore.yaml`` file.
        overrides: Optional nested dict merged on top of the file contents
            (used by the CLI for flags such as ``--seed``).

    Returns:
        A fully populated and frozen :class:`OmniCoreConfig` instance.

    Raises:
        ValueError: If a YAML field has an invalid type or value.
        FileNotFoundError: If *config_path* is explicitly given but does not exist.
    """
    resolved_path = _resolve_path(config_path)

    raw: dict = {}
    if resolved_path is not None:
        logger.info("Loading config from: %s", resolved_path)
        with resolved_path.open("r", encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file must be a YAML mapping, got: {type(loaded)}")
        raw = loaded
    else:
        logger.info("No config file found — using built-in defaults")

    if overrides:
        raw = _merge(raw, overrides)

    try:
        config = OmniCoreConfig(
            pipeline=PipelineConfig(**raw.get("pipeline", {})),
            history=HistoryConfig(**raw.get("history", {})),
            animation=AnimationConfig(**raw.get("animation", {})),
            confidence=ConfidenceConfig(**raw.get("confidence", {})),
            web=WebConfig(**raw.get("web", {})),
            logging=LoggingConfig(**raw.get("logging", {})),
        )
    except TypeError as exc:
        raise ValueError(f"Invalid config value: {exc}") from exc

    _validate_config(config)
    logger.debug("Config loaded: %s", config)
    return config


def _validate_config(config: OmniCoreConfig) -> None:
    """
    Validate cross-field constraints on the loaded configuration.

    Raises:
        ValueError: If any configured value violates a hard constraint.
    """
    pipe = config.pipeline
    if pipe.stage_base_ms < 0 or pipe.stage_jitter_ms < 0:
        raise ValueError(
            f"pipeline stage timings must be non-negative, got "
            f"base={pipe.stage_base_ms} jitter={pipe.stage_jitter_ms}"
        )
    if config.history.capacity < 1:
        raise ValueError(f"history.capacity must be ≥1, got {config.history.capacity}")
    if config.animation.step < 1:
        raise ValueError(f"animation.step must be ≥1, got {config.animation.step}")
    if config.animation.tick_ms < 0:
        raise ValueError(f"animation.tick_ms must be non-negative, got {config.animation.tick_ms}")
    conf = config.confidence
    if not (0 <= conf.medium_threshold <= conf.high_threshold <= 100):
        raise ValueError(
            "confidence thresholds must satisfy 0 ≤ medium ≤ high ≤ 100, got "
            f"medium={conf.medium_threshold} high={conf.high_threshold}"
        )
    if not (0 <= conf.review_threshold <= 100):
        raise ValueError(
            f"confidence.review_threshold must be in [0, 100], got {conf.review_threshold}"
        )
    if not (0 < config.web.port < 65536):
        raise ValueError(f"web.port must be a valid TCP port, got {config.web.port}")
    if config.logging.level.upper() not in {"DEBUG", "INFO", "WARN", "WARNING", "ERROR"}:
        raise ValueError(f"logging.level not recognised: {config.logging.level!r}")
