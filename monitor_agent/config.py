"""YAML configuration for the orchestrator.

``config/config.yaml`` holds defaults; ``config/config.local.yaml`` (git
ignored) overlays it. ``${VAR}`` strings are resolved from the environment.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .providers.selection import DEFAULT_MODELS, DEFAULT_PROVIDER_ORDER
from .tools.base import DEFAULT_CAPABILITIES

_ENV_REF = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


class ConfigError(ValueError):
    """Raised for malformed or invalid configuration."""


@dataclass
class PreFilterPolicy:
    """Confidence levels emitted by the pre-filter.

    The ordering greeting > agent-specific > generic metric > composite >
    unknown is relied on by routing and must be preserved when tuning.
    """

    greeting_confidence: float = 0.95
    general_confidence: float = 0.95
    vision_confidence: float = 0.92
    reporter_confidence: float = 0.90
    analyst_confidence: float = 0.88
    advisor_confidence: float = 0.87
    nlq_confidence: float = 0.86
    composite_confidence: float = 0.68
    unknown_confidence: float = 0.5
    composite_min_length: int = 70

    def validate(self) -> None:
        ladder = [
            self.greeting_confidence,
            max(self.vision_confidence, self.reporter_confidence, self.analyst_confidence, self.advisor_confidence),
            self.nlq_confidence,
            self.composite_confidence,
            self.unknown_confidence,
        ]
        if any(not 0.0 <= value <= 1.0 for value in ladder):
            raise ConfigError("prefilter confidences must be within [0, 1]")
        if min(
            self.vision_confidence, self.reporter_confidence, self.analyst_confidence, self.advisor_confidence
        ) < self.nlq_confidence or ladder != sorted(ladder, reverse=True):
            raise ConfigError("prefilter confidences must keep greeting > specific > generic > composite > unknown")


@dataclass
class OrchestratorConfig:
    chunk_size: int = 80
    default_agent: str = "NLQ Agent"
    agent_timeout_s: float = 45.0
    default_max_steps: int = 7
    max_steps: Dict[str, int] = field(default_factory=lambda: {"Analyst Agent": 10, "Reporter Agent": 10})
    temperature: float = 0.4
    max_output_tokens: int = 1536
    max_subtasks: int = 4
    clarify_max_chars: int = 4
    context_ttl_seconds: int = 1800
    report_pipeline_enabled: bool = True
    report_quality_threshold: float = 0.75
    report_max_iterations: int = 2
    capabilities: List[str] = field(default_factory=lambda: sorted(DEFAULT_CAPABILITIES))
    provider_order: Dict[str, List[str]] = field(default_factory=lambda: dict(DEFAULT_PROVIDER_ORDER))
    models: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_MODELS))
    prefilter: PreFilterPolicy = field(default_factory=PreFilterPolicy)

    def steps_for(self, agent_name: str) -> int:
        return self.max_steps.get(agent_name, self.default_max_steps)

    def validate(self) -> "OrchestratorConfig":
        if self.chunk_size < 1:
            raise ConfigError("chunk_size must be >= 1")
        if self.agent_timeout_s <= 0:
            raise ConfigError("agent_timeout_s must be > 0")
        if self.default_max_steps < 1 or any(v < 1 for v in self.max_steps.values()):
            raise ConfigError("max_steps values must be >= 1")
        if not 1 <= self.max_subtasks <= 8:
            raise ConfigError("max_subtasks must be between 1 and 8")
        if not 0.0 <= self.report_quality_threshold <= 1.0:
            raise ConfigError("report_quality_threshold must be within [0, 1]")
        if self.report_max_iterations < 1:
            raise ConfigError("report_max_iterations must be >= 1")
        self.prefilter.validate()
        return self


def load_raw_config(config_path: str = "config/config.local.yaml") -> Dict[str, Any]:
    """Load a config mapping, overlaying config.local.yaml on config.yaml.

    Missing files yield an empty mapping so the dataclass defaults apply.
    """
    repo_root = Path(__file__).resolve().parents[1]

    def _resolve(candidate: str) -> Path:
        path = Path(candidate)
        if path.exists() or path.is_absolute():
            return path
        return repo_root / candidate

    target = _resolve(config_path)
    if Path(config_path).name == "config.local.yaml":
        base = _load_yaml(_resolve("config/config.yaml"))
        return _deep_merge(base, _load_yaml(target))
    return _load_yaml(target)


def load_config(config_path: str = "config/config.local.yaml", env: Optional[Mapping[str, str]] = None) -> OrchestratorConfig:
    env = os.environ if env is None else env
    data = _resolve_env_refs(load_raw_config(config_path), env)
    section = data.get("orchestrator", data)
    if not isinstance(section, dict):
        raise ConfigError("orchestrator section must be a mapping")

    known = {f.name for f in fields(OrchestratorConfig)} - {"prefilter"}
    unknown = set(section) - known - {"prefilter"}
    if unknown:
        raise ConfigError(f"Unknown orchestrator setting(s): {', '.join(sorted(unknown))}")

    prefilter_data = section.get("prefilter") or {}
    policy_fields = {f.name for f in fields(PreFilterPolicy)}
    bad_policy = set(prefilter_data) - policy_fields
    if bad_policy:
        raise ConfigError(f"Unknown prefilter setting(s): {', '.join(sorted(bad_policy))}")

    config = OrchestratorConfig(
        **{key: value for key, value in section.items() if key in known},
        prefilter=PreFilterPolicy(**prefilter_data),
    )
    _apply_env_overrides(config, env)
    return config.validate()


def _apply_env_overrides(config: OrchestratorConfig, env: Mapping[str, str]) -> None:
    try:
        if env.get("CONTEXT_TTL_SECONDS"):
            config.context_ttl_seconds = int(env["CONTEXT_TTL_SECONDS"])
        if env.get("MONITOR_AGENT_TIMEOUT_SECONDS"):
            config.agent_timeout_s = float(env["MONITOR_AGENT_TIMEOUT_SECONDS"])
    except ValueError as e:
        raise ConfigError(f"Invalid numeric environment override: {e}") from e
    if env.get("MONITOR_AGENT_DEFAULT_AGENT"):
        config.default_agent = env["MONITOR_AGENT_DEFAULT_AGENT"]


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a mapping: {path}")
    return data


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _resolve_env_refs(value: Any, env: Mapping[str, str]) -> Any:
    if isinstance(value, dict):
        return {k: _resolve_env_refs(v, env) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_refs(v, env) for v in value]
    if isinstance(value, str):
        match = _ENV_REF.match(value)
        if match:
            return env.get(match.group(1), "")
    return value
