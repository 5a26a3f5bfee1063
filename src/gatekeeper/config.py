"""Configuration: settings document, env overrides and persisted weight overrides.

Precedence, lowest first: built-in defaults, the settings document (TOML or
JSON), ``GATEKEEPER_*`` environment variables, then ``criteria_overrides.json``
in the data directory (written by ``gate tune --apply``).
"""

from __future__ import annotations

import json
import logging
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gatekeeper.engine.worker import OutputMode
from gatekeeper.errors import ConfigurationError
from gatekeeper.routing.models import TaskCategory, parse_category
from gatekeeper.routing.policy import DEFAULT_TOKEN_THRESHOLDS
from gatekeeper.validation.models import Phase, Thresholds
from gatekeeper.validation.registry import CriteriaRegistry

logger = logging.getLogger(__name__)

ENV_CONFIG = "GATEKEEPER_CONFIG"
ENV_DATA_DIR = "GATEKEEPER_DATA_DIR"

DEFAULT_DATA_DIR = Path.home() / ".gatekeeper"
CONFIG_FILENAME = "config.toml"
OVERRIDES_FILENAME = "criteria_overrides.json"
LEDGER_FILENAME = "ledger.db"

TOP_LEVEL_KEYS = frozenset(
    {
        "max_retries",
        "auto_enhance",
        "worker_timeout",
        "output_mode",
        "data_dir",
        "worker_command",
        "token_threshold",
        "categories",
    }
)
CATEGORY_KEYS = frozenset({"thresholds", "phase_weights", "criteria"})

DEFAULT_CONFIG_TOML = """\
# gatekeeper settings

max_retries = 2
auto_enhance = true
worker_timeout = 300.0
output_mode = "text"
# Command run for each worker invocation; the prompt is written to stdin
worker_command = []

[token_threshold]
research = 1000
code-generation = 500
debugging = 600
reporting = 800
generic = 500

# Per-category overrides. Criterion weights within a phase must sum to 1.0.
# [categories.research.thresholds]
# pass = 0.80
# enhance = 0.60
"""


@dataclass
class Settings:
    """Resolved runtime settings."""

    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    max_retries: int = 2
    auto_enhance: bool = True
    worker_timeout: float = 300.0
    output_mode: OutputMode = OutputMode.TEXT
    worker_command: list[str] = field(default_factory=list)
    token_thresholds: dict[TaskCategory, int] = field(
        default_factory=lambda: dict(DEFAULT_TOKEN_THRESHOLDS)
    )
    registry: CriteriaRegistry = field(default_factory=CriteriaRegistry.default)
    config_path: Path | None = None

    @property
    def ledger_path(self) -> Path:
        return self.data_dir / LEDGER_FILENAME

    @property
    def overrides_path(self) -> Path:
        return self.data_dir / OVERRIDES_FILENAME

    def ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)


# ═══════════════════════════════════════════════════════════════════════════
# DOCUMENT PARSING
# ═══════════════════════════════════════════════════════════════════════════


def read_document(path: Path) -> dict[str, Any]:
    """Read a TOML or JSON settings document (by suffix)."""
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(path.read_text())
        else:
            with open(path, "rb") as f:
                data = tomllib.load(f)
    except (OSError, json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigurationError(f"Cannot read config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config {path} must contain a table at top level")
    return data


def _category(name: str) -> TaskCategory:
    try:
        return parse_category(name)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc


def _table(value: Any, key: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"{key} must be a table")
    return value


def _number(value: Any, key: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{key} must be a number, got {value!r}")
    return float(value)


def _apply_scalars(settings: Settings, data: Mapping[str, Any]) -> None:
    if "max_retries" in data:
        value = data["max_retries"]
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ConfigurationError(f"max_retries must be an integer >= 0, got {value!r}")
        settings.max_retries = value
    if "auto_enhance" in data:
        if not isinstance(data["auto_enhance"], bool):
            raise ConfigurationError("auto_enhance must be true or false")
        settings.auto_enhance = data["auto_enhance"]
    if "worker_timeout" in data:
        timeout = _number(data["worker_timeout"], "worker_timeout")
        if timeout <= 0:
            raise ConfigurationError(f"worker_timeout must be > 0, got {timeout}")
        settings.worker_timeout = timeout
    if "output_mode" in data:
        try:
            settings.output_mode = OutputMode(data["output_mode"])
        except ValueError as exc:
            raise ConfigurationError(
                f"output_mode must be 'text' or 'json', got {data['output_mode']!r}"
            ) from exc
    if "worker_command" in data:
        command = data["worker_command"]
        if isinstance(command, str):
            command = command.split()
        if not isinstance(command, list) or not all(isinstance(a, str) for a in command):
            raise ConfigurationError("worker_command must be a list of strings")
        settings.worker_command = list(command)
    if "data_dir" in data:
        settings.data_dir = Path(os.path.expanduser(str(data["data_dir"])))


def _apply_token_thresholds(settings: Settings, table: Any) -> None:
    if not isinstance(table, Mapping):
        raise ConfigurationError("token_threshold must be a table of category = tokens")
    for name, value in table.items():
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ConfigurationError(f"token_threshold.{name} must be a positive integer")
        settings.token_thresholds[_category(name)] = value


def apply_category_overrides(
    registry: CriteriaRegistry, categories: Any
) -> CriteriaRegistry:
    """Apply ``{category: {thresholds, phase_weights, criteria}}`` to ``registry``."""
    if not isinstance(categories, Mapping):
        raise ConfigurationError("categories must be a table keyed by category name")
    for name, spec in categories.items():
        category = _category(name)
        if not isinstance(spec, Mapping):
            raise ConfigurationError(f"categories.{name} must be a table")
        unknown = set(spec) - CATEGORY_KEYS
        if unknown:
            raise ConfigurationError(
                f"categories.{name}: unknown keys {', '.join(sorted(unknown))}"
            )

        thresholds = None
        if "thresholds" in spec:
            current = registry.thresholds(category)
            raw = _table(spec["thresholds"], f"{name}.thresholds")
            thresholds = Thresholds(
                pass_=_number(raw.get("pass", current.pass_), f"{name}.thresholds.pass"),
                enhance=_number(raw.get("enhance", current.enhance), f"{name}.thresholds.enhance"),
            )

        phase_weights = None
        if "phase_weights" in spec:
            phase_weights = dict(registry.phase_weights(category))
            raw_phases = _table(spec["phase_weights"], f"{name}.phase_weights")
            for phase_name, weight in raw_phases.items():
                try:
                    phase = Phase(phase_name)
                except ValueError as exc:
                    raise ConfigurationError(f"{name}: unknown phase {phase_name!r}") from exc
                phase_weights[phase] = _number(weight, f"{name}.phase_weights.{phase_name}")

        criteria = None
        if "criteria" in spec:
            criteria = {
                criterion: _number(weight, f"{name}.criteria.{criterion}")
                for criterion, weight in _table(spec["criteria"], f"{name}.criteria").items()
            }

        try:
            registry = registry.with_overrides(
                category,
                criterion_weights=criteria,
                phase_weights=phase_weights,
                thresholds=thresholds,
            )
        except ConfigurationError:
            raise
        except ValueError as exc:
            # Criterion rejects weights outside (0, 1]
            raise ConfigurationError(f"{name}: {exc}") from exc
    return registry


def apply_document(settings: Settings, data: Mapping[str, Any]) -> Settings:
    """Apply a parsed settings document to ``settings`` in place."""
    unknown = set(data) - TOP_LEVEL_KEYS
    if unknown:
        raise ConfigurationError(f"Unknown config keys: {', '.join(sorted(unknown))}")
    _apply_scalars(settings, data)
    if "token_threshold" in data:
        _apply_token_thresholds(settings, data["token_threshold"])
    if "categories" in data:
        settings.registry = apply_category_overrides(settings.registry, data["categories"])
    return settings


# ═══════════════════════════════════════════════════════════════════════════
# PERSISTED OVERRIDES
# ═══════════════════════════════════════════════════════════════════════════


def overrides_document(registry: CriteriaRegistry) -> dict[str, Any]:
    """Criterion weights that differ from the defaults, keyed by category."""
    defaults = CriteriaRegistry.default()
    categories: dict[str, Any] = {}
    for category in TaskCategory:
        current = registry.entry(category)
        baseline = {c.name: c.weight for c in defaults.entry(category).criteria}
        weights = {c.name: c.weight for c in current.criteria}
        if weights == baseline:
            continue
        # Whole phases are written so each phase still sums to 1.0 on reload
        changed_phases = {
            c.phase for c in current.criteria if abs(c.weight - baseline[c.name]) > 1e-12
        }
        categories[category.value] = {
            "criteria": {c.name: c.weight for c in current.criteria if c.phase in changed_phases}
        }
    return {"registry_version": registry.version, "categories": categories}


def save_overrides(registry: CriteriaRegistry, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(overrides_document(registry), indent=2, sort_keys=True) + "\n")
    logger.info("Saved criteria overrides (registry v%d) to %s", registry.version, path)
    return path


def load_overrides(registry: CriteriaRegistry, path: Path) -> CriteriaRegistry:
    if not path.exists():
        return registry
    data = read_document(path)
    logger.debug("Applying criteria overrides from %s", path)
    return apply_category_overrides(registry, data.get("categories", {}))


# ═══════════════════════════════════════════════════════════════════════════
# LOADING
# ═══════════════════════════════════════════════════════════════════════════


def _resolve_config_path(explicit: Path | None, data_dir: Path) -> Path | None:
    if explicit is not None:
        if not explicit.exists():
            raise ConfigurationError(f"Config file not found: {explicit}")
        return explicit
    env_path = os.getenv(ENV_CONFIG)
    if env_path:
        path = Path(os.path.expanduser(env_path))
        if not path.exists():
            raise ConfigurationError(f"{ENV_CONFIG} points to a missing file: {path}")
        return path
    default = data_dir / CONFIG_FILENAME
    return default if default.exists() else None


def load_config(
    path: str | Path | None = None, data_dir: str | Path | None = None
) -> Settings:
    """Load settings: defaults < document < env vars < persisted overrides.

    Raises:
        ConfigurationError: The document or overrides are malformed

    """
    settings = Settings()
    env_data_dir = os.getenv(ENV_DATA_DIR)
    if data_dir is not None:
        settings.data_dir = Path(data_dir)
    elif env_data_dir:
        settings.data_dir = Path(os.path.expanduser(env_data_dir))

    config_path = _resolve_config_path(Path(path) if path else None, settings.data_dir)
    if config_path is not None:
        apply_document(settings, read_document(config_path))
        settings.config_path = config_path
        # Explicit and env locations win over the document's data_dir
        if data_dir is not None:
            settings.data_dir = Path(data_dir)
        elif env_data_dir:
            settings.data_dir = Path(os.path.expanduser(env_data_dir))

    settings.registry = load_overrides(settings.registry, settings.overrides_path)
    return settings


def write_default_config(data_dir: Path, overwrite: bool = False) -> Path:
    """Write the commented default settings document into ``data_dir``."""
    data_dir.mkdir(parents=True, exist_ok=True)
    path = data_dir / CONFIG_FILENAME
    if path.exists() and not overwrite:
        return path
    path.write_text(DEFAULT_CONFIG_TOML)
    return path
