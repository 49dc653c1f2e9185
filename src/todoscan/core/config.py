"""
Settings for todoscan.

Values are layered: the bundled defaults.yaml, then an optional YAML or
JSON file, then TODOSCAN_<SECTION>_<KEY> environment variables. The
result is converted to the immutable ScanConfig the engine works with.
"""

import copy
import json
import logging
import os
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, fields
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml

from todoscan.core.models import DEFAULT_PATTERN_TEMPLATE, KeywordRule, ScanConfig

logger = logging.getLogger(__name__)

_BUNDLED_DEFAULTS = Path(__file__).parent / "defaults.yaml"

_FORMATS = (".yaml", ".yml", ".json")


class TodoScanError(Exception):
    """Base exception for todoscan errors."""

    pass


class ConfigError(TodoScanError):
    """Raised when a configuration file cannot be loaded."""

    pass


@lru_cache(maxsize=1)
def _bundled_defaults() -> dict[str, Any]:
    try:
        data = yaml.safe_load(_BUNDLED_DEFAULTS.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.warning(f"Bundled defaults missing: {_BUNDLED_DEFAULTS}")
        return {}
    except yaml.YAMLError as e:
        logger.error(f"Bundled defaults are not valid YAML: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def _default(section: str, key: str, fallback: Any = None) -> Any:
    value = _bundled_defaults().get(section, {}).get(key, fallback)
    # Instances must not share mutable defaults
    return copy.deepcopy(value)


def _defaulted(section: str, key: str, fallback: Any = None) -> Any:
    return field(default_factory=lambda: _default(section, key, fallback))


@dataclass
class ScanSettings:
    """Keyword, scope and pattern settings."""

    keywords: list[dict[str, str]] = _defaulted(
        "scan",
        "keywords",
        [
            {"keyword": "FIXME", "severity": "error"},
            {"keyword": "BUG", "severity": "error"},
            {"keyword": "TODO", "severity": "warning"},
            {"keyword": "HACK", "severity": "warning"},
            {"keyword": "XXX", "severity": "warning"},
        ],
    )
    include: list[str] = _defaulted("scan", "include", ["**/*"])
    exclude: list[str] = _defaulted(
        "scan",
        "exclude",
        [
            "**/.git/**",
            "**/.vscode/**",
            "**/node_modules/**",
            "**/build/**",
            "**/dist/**",
            "**/out/**",
        ],
    )
    pattern: str = _defaulted("scan", "pattern", DEFAULT_PATTERN_TEMPLATE)
    case_sensitive: bool = _defaulted("scan", "case_sensitive", True)
    source_label: str = _defaulted("scan", "source_label", "todoscan")
    enabled: bool = _defaulted("scan", "enabled", True)
    disabled: list[str] = _defaulted("scan", "disabled", [])


@dataclass
class WatchSettings:
    """Debounce and concurrency settings for incremental updates."""

    change_debounce_ms: int = _defaulted("watch", "change_debounce_ms", 300)
    config_debounce_ms: int = _defaulted("watch", "config_debounce_ms", 400)
    save_suppression_ms: int = _defaulted("watch", "save_suppression_ms", 1000)
    max_concurrency: int = _defaulted("watch", "max_concurrency", 50)


@dataclass
class LoggingConfig:
    level: str = _defaulted("logging", "level", "INFO")
    format: str = _defaulted(
        "logging", "format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# env var -> (section, key, converter)
_ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "TODOSCAN_SCAN_INCLUDE": ("scan", "include", _parse_list),
    "TODOSCAN_SCAN_EXCLUDE": ("scan", "exclude", _parse_list),
    "TODOSCAN_SCAN_DISABLED": ("scan", "disabled", _parse_list),
    "TODOSCAN_SCAN_PATTERN": ("scan", "pattern", str),
    "TODOSCAN_SCAN_CASE_SENSITIVE": ("scan", "case_sensitive", _parse_bool),
    "TODOSCAN_SCAN_SOURCE_LABEL": ("scan", "source_label", str),
    "TODOSCAN_SCAN_ENABLED": ("scan", "enabled", _parse_bool),
    "TODOSCAN_WATCH_CHANGE_DEBOUNCE_MS": ("watch", "change_debounce_ms", int),
    "TODOSCAN_WATCH_CONFIG_DEBOUNCE_MS": ("watch", "config_debounce_ms", int),
    "TODOSCAN_WATCH_SAVE_SUPPRESSION_MS": ("watch", "save_suppression_ms", int),
    "TODOSCAN_WATCH_MAX_CONCURRENCY": ("watch", "max_concurrency", int),
    "TODOSCAN_LOGGING_LEVEL": ("logging", "level", str),
}


def _section_from(section_cls: type, name: str, data: Any) -> Any:
    """Build one settings section. Unknown keys are dropped with a warning."""
    if not isinstance(data, dict):
        logger.warning(f"Config section '{name}' is not a mapping, using defaults")
        return section_cls()

    accepted = {f.name for f in fields(section_cls)}
    extra = sorted(set(data) - accepted)
    if extra:
        logger.warning(f"Ignoring unknown keys in config section '{name}': {', '.join(extra)}")
    return section_cls(**{k: v for k, v in data.items() if k in accepted})


def _check_format(path: Path) -> None:
    if path.suffix not in _FORMATS:
        raise ConfigError(f"Unsupported config file format: {path.suffix}")


@dataclass
class TodoScanConfig:
    """All user-facing settings, grouped by section."""

    scan: ScanSettings = field(default_factory=ScanSettings)
    watch: WatchSettings = field(default_factory=WatchSettings)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    _SECTIONS = {"scan": ScanSettings, "watch": WatchSettings, "logging": LoggingConfig}

    @classmethod
    def from_file(cls, path: Path | str) -> "TodoScanConfig":
        """
        Read settings from a .yaml, .yml or .json file.

        Sections and keys left out of the file keep their defaults.

        Raises:
            ConfigError: Missing file, unsupported suffix, bad syntax, or a
                top level that is not a mapping
        """
        path = Path(path)
        if not path.is_file():
            raise ConfigError(f"Configuration file not found: {path}")
        _check_format(path)

        text = path.read_text(encoding="utf-8")
        try:
            if path.suffix == ".json":
                data = json.loads(text) if text.strip() else {}
            else:
                data = yaml.safe_load(text) or {}
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to parse configuration file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file {path} must contain a mapping")

        config = cls()
        for name, section_cls in cls._SECTIONS.items():
            if name in data:
                setattr(config, name, _section_from(section_cls, name, data[name]))
        return config

    def apply_env_overrides(self) -> "TodoScanConfig":
        """
        Overlay TODOSCAN_<SECTION>_<KEY> environment variables.

        List values are comma-separated. Values that fail to convert are
        logged and skipped.
        """
        for env_var, (section, key, convert) in _ENV_OVERRIDES.items():
            raw = os.environ.get(env_var)
            if raw is None:
                continue
            try:
                value = convert(raw)
            except ValueError:
                logger.warning(f"Ignoring invalid value for {env_var}: {raw!r}")
                continue
            setattr(getattr(self, section), key, value)
        return self

    def to_scan_config(self) -> ScanConfig:
        """Freeze the scan section into a ScanConfig."""
        rules = []
        for entry in self.scan.keywords or []:
            if isinstance(entry, str):
                entry = {"keyword": entry}
            if not isinstance(entry, dict) or not entry.get("keyword"):
                logger.warning(f"Ignoring malformed keyword rule: {entry!r}")
                continue
            rules.append(KeywordRule.from_dict(entry))

        scan = self.scan
        return ScanConfig(
            rules=tuple(rules),
            include_globs=tuple(scan.include or ()),
            exclude_globs=tuple(scan.exclude or ()),
            pattern_template=scan.pattern or DEFAULT_PATTERN_TEMPLATE,
            case_sensitive=bool(scan.case_sensitive),
            source_label=scan.source_label,
            enabled=bool(scan.enabled),
            disabled_globs=tuple(scan.disabled or ()),
        )

    def to_dict(self) -> dict:
        return asdict(self)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def save(self, path: Path | str) -> None:
        """Write settings in the format implied by the file suffix."""
        path = Path(path)
        _check_format(path)
        content = self.to_json() if path.suffix == ".json" else self.to_yaml()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")


def load_config(config_path: Optional[Path | str] = None, apply_env: bool = True) -> TodoScanConfig:
    """
    Resolve the effective settings.

    Args:
        config_path: Settings file to read; bundled defaults only when None
        apply_env: Overlay TODOSCAN_* environment variables

    Raises:
        ConfigError: If ``config_path`` cannot be loaded
    """
    config = TodoScanConfig.from_file(config_path) if config_path else TodoScanConfig()
    return config.apply_env_overrides() if apply_env else config
