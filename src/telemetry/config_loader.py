"""Load, validate, and hot-reload the Dayline pipeline configuration.

The config lives in ``pipeline_config.yaml`` alongside this module.  At
startup it is loaded once and cached.  Call ``reload_pipeline_config()`` to
re-read from disk after an update without a restart.

Usage::

    from src.telemetry.config_loader import get_pipeline_config

    config = get_pipeline_config()
    cutoff = config.awake_score.awake_cutoff     # 3
    tz = config.attribution.tzinfo               # ZoneInfo('America/New_York')
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

logger = logging.getLogger("dayline.telemetry.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "pipeline_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AwakeScoreConfig:
    """Thresholds and points for the 0–7 awake-score heuristic."""

    avg_hr_bpm: float = 70.0
    avg_hr_points: int = 2
    max_hr_bpm: float = 85.0
    max_hr_points: int = 1
    significant_step_qty: float = 2.0
    significant_steps_per_hour: float = 1.0
    significant_steps_points: int = 2
    steps_per_hour: float = 20.0
    steps_points: int = 2
    awake_cutoff: int = 3

    @property
    def max_score(self) -> int:
        return (
            self.avg_hr_points
            + self.max_hr_points
            + self.significant_steps_points
            + self.steps_points
        )


@dataclass(frozen=True)
class EvidenceConfig:
    """When a gap counts as too sparsely instrumented to classify."""

    min_span_minutes: float = 30.0
    min_hr_samples_per_hour: float = 2.0


@dataclass(frozen=True)
class AttributionConfig:
    """Day attribution settings."""

    source_timezone: str = "America/New_York"
    lookback_days: int = 1

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.source_timezone)


@dataclass(frozen=True)
class PipelineConfig:
    """Complete, validated pipeline configuration.

    Attributes:
        version:      Config schema version string.
        awake_score:  Awake-score thresholds used by the nested-session resolver.
        evidence:     Sparse-instrumentation cutoffs.
        attribution:  Source timezone and lookback for day attribution.
    """

    version: str = "1.0"
    awake_score: AwakeScoreConfig = field(default_factory=AwakeScoreConfig)
    evidence: EvidenceConfig = field(default_factory=EvidenceConfig)
    attribution: AttributionConfig = field(default_factory=AttributionConfig)
    _raw: dict = field(default_factory=dict, repr=False, compare=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when pipeline_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Pipeline config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> PipelineConfig:
    """Validate the raw YAML dict and construct a PipelineConfig.

    Missing keys fall back to the dataclass defaults; present keys must be
    numeric, finite and non-negative, and integer keys must be whole numbers
    (booleans are rejected).  All problems are collected and reported in
    one ConfigValidationError.
    """
    errors: list[str] = []

    def _number(section: dict, key: str, section_name: str, default: float, cast: type) -> Any:
        if key not in section:
            return default
        val = section[key]
        if isinstance(val, bool):
            errors.append(f"{section_name}.{key} must be a number, got {val!r}")
            return default
        try:
            num = float(val)
        except (TypeError, ValueError):
            errors.append(f"{section_name}.{key} must be a number, got {val!r}")
            return default
        if not math.isfinite(num):
            errors.append(f"{section_name}.{key} must be finite, got {val!r}")
            return default
        if cast is int:
            if not num.is_integer():
                errors.append(f"{section_name}.{key} must be a whole number, got {val!r}")
                return default
            num = int(num)
        if num < 0:
            errors.append(f"{section_name}.{key} = {num} must be >= 0")
        return num

    def _section(name: str) -> dict:
        section = raw.get(name) or {}
        if not isinstance(section, dict):
            errors.append(f"'{name}' must be a mapping")
            return {}
        return section

    version = str(raw.get("version", "1.0"))

    # ── Awake score ──
    as_raw = _section("awake_score")
    d = AwakeScoreConfig()
    awake_score = AwakeScoreConfig(
        avg_hr_bpm=_number(as_raw, "avg_hr_bpm", "awake_score", d.avg_hr_bpm, float),
        avg_hr_points=_number(as_raw, "avg_hr_points", "awake_score", d.avg_hr_points, int),
        max_hr_bpm=_number(as_raw, "max_hr_bpm", "awake_score", d.max_hr_bpm, float),
        max_hr_points=_number(as_raw, "max_hr_points", "awake_score", d.max_hr_points, int),
        significant_step_qty=_number(
            as_raw, "significant_step_qty", "awake_score", d.significant_step_qty, float
        ),
        significant_steps_per_hour=_number(
            as_raw, "significant_steps_per_hour", "awake_score", d.significant_steps_per_hour, float
        ),
        significant_steps_points=_number(
            as_raw, "significant_steps_points", "awake_score", d.significant_steps_points, int
        ),
        steps_per_hour=_number(as_raw, "steps_per_hour", "awake_score", d.steps_per_hour, float),
        steps_points=_number(as_raw, "steps_points", "awake_score", d.steps_points, int),
        awake_cutoff=_number(as_raw, "awake_cutoff", "awake_score", d.awake_cutoff, int),
    )
    if awake_score.awake_cutoff > awake_score.max_score:
        errors.append(
            f"awake_score.awake_cutoff = {awake_score.awake_cutoff} exceeds the "
            f"maximum attainable score {awake_score.max_score}"
        )

    # ── Evidence ──
    ev_raw = _section("evidence")
    de = EvidenceConfig()
    evidence = EvidenceConfig(
        min_span_minutes=_number(ev_raw, "min_span_minutes", "evidence", de.min_span_minutes, float),
        min_hr_samples_per_hour=_number(
            ev_raw, "min_hr_samples_per_hour", "evidence", de.min_hr_samples_per_hour, float
        ),
    )

    # ── Attribution ──
    at_raw = _section("attribution")
    da = AttributionConfig()
    tz_name = str(at_raw.get("source_timezone", da.source_timezone))
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"attribution.source_timezone {tz_name!r} is not a known IANA zone")
    attribution = AttributionConfig(
        source_timezone=tz_name,
        lookback_days=_number(at_raw, "lookback_days", "attribution", da.lookback_days, int),
    )

    if errors:
        raise ConfigValidationError(
            f"pipeline_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return PipelineConfig(
        version=version,
        awake_score=awake_score,
        evidence=evidence,
        attribution=attribution,
        _raw=raw,
    )


def load_pipeline_config(path: Path | None = None) -> PipelineConfig:
    """Load and validate the pipeline config from disk.

    Args:
        path: Override path to YAML. Uses the bundled pipeline_config.yaml by default.

    Returns:
        Validated PipelineConfig instance.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded pipeline config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: PipelineConfig | None = None
_config_lock = threading.Lock()


def get_pipeline_config(path: Path | None = None) -> PipelineConfig:
    """Return the global PipelineConfig singleton, loading it on first call.

    Thread-safe.  ``path`` is only consulted on the first load; use
    ``reload_pipeline_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_pipeline_config(path)
    return _config


def reload_pipeline_config(path: Path | None = None) -> PipelineConfig:
    """Reload the pipeline config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_pipeline_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info(
        "Reloaded pipeline config: %s → %s",
        old_version,
        new_config.version,
    )
    return new_config
