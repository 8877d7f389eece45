"""dashcal.config_loader

Config loading for dashcal.

- Reads YAML (PyYAML) config files; plain JSON files are accepted too.
- Environment variables (optionally seeded from a ``.env`` file) override
  file values.
- Exposes a typed dataclass `Config`, a `load_config()` helper and
  `ConfigManager` for the environment layer.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .dash_models import CalendarSourceConfig

logger = logging.getLogger(__name__)

MIN_REFRESH_SECONDS = 15
MAX_REFRESH_SECONDS = 3600

_QUOTES_RE = re.compile(r"^['\"]|['\"]$")


def _strip_quotes(value: str) -> str:
    return _QUOTES_RE.sub("", value.strip())


@dataclass
class Config:
    """Typed configuration for dashcal.

    Fields:
        sources: ordered calendar sources; index order drives colours and ids
        refresh_interval_seconds: how often to refresh (15..3600)
        timezone: IANA zone for UTC conversion, None for system local time
        log_level: logging level name
        request_timeout: HTTP read timeout in seconds
        max_retries: fetch retries for transient network errors
        retry_backoff_factor: base of the exponential retry backoff
        enforce_weekly_count: make WEEKLY rules honour COUNT
        max_occurrences_per_rule: safety cap on occurrences per recurring event
    """

    sources: list[CalendarSourceConfig] = field(default_factory=list)
    refresh_interval_seconds: int = 60
    timezone: str | None = None
    log_level: str = "INFO"
    request_timeout: int = 30
    max_retries: int = 2
    retry_backoff_factor: float = 1.5
    enforce_weekly_count: bool = False
    max_occurrences_per_rule: int = 1000

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Config:
        """Create Config from a plain mapping, applying defaults and validation.

        Numeric-like values are coerced, sources may be plain URL strings or
        mappings with ``url``/``name``/``color``, and refresh_interval_seconds
        is clamped to 15..3600. Coercions are logged as warnings.
        """
        if data is None:
            data = {}

        sources = _coerce_sources(data.get("sources", []))

        def _coerce_int(key: str, default: int) -> int:
            raw = data.get(key, default)
            try:
                return int(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not an int; using default %d", key, raw, default)
                return default

        def _coerce_float(key: str, default: float) -> float:
            raw = data.get(key, default)
            try:
                return float(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not a number; using default %s", key, raw, default)
                return default

        refresh = _coerce_int("refresh_interval_seconds", 60)
        if refresh < MIN_REFRESH_SECONDS:
            logger.warning(
                "refresh_interval_seconds %d below minimum; coercing to %d",
                refresh,
                MIN_REFRESH_SECONDS,
            )
            refresh = MIN_REFRESH_SECONDS
        elif refresh > MAX_REFRESH_SECONDS:
            logger.warning(
                "refresh_interval_seconds %d above maximum; coercing to %d",
                refresh,
                MAX_REFRESH_SECONDS,
            )
            refresh = MAX_REFRESH_SECONDS

        max_occurrences = _coerce_int("max_occurrences_per_rule", 1000)
        if max_occurrences < 1:
            logger.warning("max_occurrences_per_rule %d invalid; using 1000", max_occurrences)
            max_occurrences = 1000

        timezone = data.get("timezone")
        timezone = str(timezone) if timezone else None

        log_level = data.get("log_level", "INFO")
        log_level = str(log_level).upper() if log_level is not None else "INFO"

        return cls(
            sources=sources,
            refresh_interval_seconds=refresh,
            timezone=timezone,
            log_level=log_level,
            request_timeout=max(1, _coerce_int("request_timeout", 30)),
            max_retries=max(0, _coerce_int("max_retries", 2)),
            retry_backoff_factor=_coerce_float("retry_backoff_factor", 1.5),
            enforce_weekly_count=_coerce_bool(data.get("enforce_weekly_count", False)),
            max_occurrences_per_rule=max_occurrences,
        )


def _coerce_bool(raw: Any) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    return bool(raw)


def _coerce_sources(sources_raw: Any) -> list[CalendarSourceConfig]:
    if sources_raw is None:
        return []
    if not isinstance(sources_raw, (list, tuple)):
        logger.warning("Config `sources` is not a list; coercing to single-item list")
        sources_raw = [sources_raw]

    sources: list[CalendarSourceConfig] = []
    for index, entry in enumerate(sources_raw):
        if isinstance(entry, dict):
            url = entry.get("url")
            if not url:
                logger.warning("Config source %d has no url; skipping", index)
                continue
            name = entry.get("name")
            color = entry.get("color")
            sources.append(
                CalendarSourceConfig(
                    url=str(url).strip(),
                    name=_strip_quotes(str(name)) if name else None,
                    color=_strip_quotes(str(color)) if color else None,
                )
            )
        elif entry:
            sources.append(CalendarSourceConfig(url=str(entry).strip()))
    return sources


def _load_yaml_or_json(path: Path) -> Any:
    """Load a mapping from a YAML or JSON file.

    The `yaml` import happens here so that importing the package stays cheap.
    """
    import yaml  # noqa: PLC0415

    text = path.read_text(encoding="utf-8")
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as yaml_exc:
        try:
            return json.loads(text)
        except ValueError as exc:
            raise RuntimeError(
                f"Unable to parse config {path}: not valid YAML ({yaml_exc}) or JSON"
            ) from exc
    # safe_load returns None for empty files
    if loaded is None:
        return {}
    return loaded


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Skips blank lines and comments, strips surrounding quotes from values.
    Returns an empty dict when the file does not exist.
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export ") :].strip()
        if key:
            result[key] = _strip_quotes(val)
    return result


class ConfigManager:
    """Builds configuration overrides from environment variables and .env files."""

    ENV_PREFIX = "DASHCAL_"

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file into the environment without overriding existing keys.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        set_keys = []
        for key, val in parse_env_file(self.env_file_path).items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))
        return set_keys

    def build_config_from_env(self) -> dict[str, Any]:
        """Build configuration overrides from environment variables.

        Recognizes:
        - DASHCAL_CALENDAR_URLS -> 'sources' (comma-separated URLs)
        - DASHCAL_CALENDAR_NAME_<n> / DASHCAL_CALENDAR_COLOR_<n> -> name/colour of source n (1-based)
        - DASHCAL_REFRESH_INTERVAL -> 'refresh_interval_seconds' (int)
        - DASHCAL_TIMEZONE -> 'timezone'
        - DASHCAL_LOG_LEVEL -> 'log_level'

        Returns:
            Mapping suitable for Config.from_dict
        """
        cfg: dict[str, Any] = {}

        urls_raw = os.environ.get("DASHCAL_CALENDAR_URLS")
        if urls_raw:
            urls = [u.strip() for u in urls_raw.split(",") if u.strip()]
            sources = []
            for number, url in enumerate(urls, start=1):
                source: dict[str, Any] = {"url": url}
                name = os.environ.get(f"DASHCAL_CALENDAR_NAME_{number}", "").strip()
                color = os.environ.get(f"DASHCAL_CALENDAR_COLOR_{number}", "").strip()
                if name:
                    source["name"] = _strip_quotes(name)
                if color:
                    source["color"] = _strip_quotes(color)
                sources.append(source)
            cfg["sources"] = sources

        refresh = os.environ.get("DASHCAL_REFRESH_INTERVAL")
        if refresh:
            try:
                cfg["refresh_interval_seconds"] = int(refresh)
            except ValueError:
                logger.warning("Invalid DASHCAL_REFRESH_INTERVAL=%r; ignoring", refresh)

        timezone = os.environ.get("DASHCAL_TIMEZONE")
        if timezone:
            cfg["timezone"] = timezone

        log_level = os.environ.get("DASHCAL_LOG_LEVEL")
        if log_level:
            cfg["log_level"] = log_level

        return cfg

    def load_full_config(self) -> dict[str, Any]:
        """Load .env defaults and build the environment overrides."""
        self.load_env_file()
        return self.build_config_from_env()


def load_config(path: str | None = None, env_manager: ConfigManager | None = None) -> Config:
    """Load configuration from a YAML/JSON file plus environment overrides.

    Args:
        path: Optional path to the config file. Defaults to ./dashcal.yaml.
        env_manager: Environment layer; pass None to use the default ConfigManager

    Returns:
        Config dataclass instance with values from file, environment, or defaults.

    Behavior:
    - If the file is missing: file values are empty and defaults apply.
    - If the file exists but top-level is not a mapping: raises ValueError.
    - If the file is neither YAML nor JSON: raises RuntimeError.
    """
    p = Path(path) if path else Path.cwd() / "dashcal.yaml"
    logger.debug("Attempting to load config from %s", p)

    raw: dict[str, Any] = {}
    if p.exists():
        loaded = _load_yaml_or_json(p)
        if not isinstance(loaded, dict):
            logger.warning("Config file %s parsed but top-level is not a mapping: %r", p, loaded)
            raise ValueError("Config file must contain a mapping at top level")  # noqa: TRY004
        raw = loaded
        logger.info("Loaded configuration from %s", p)
    else:
        logger.info("Config file %s not found; using defaults", p)

    manager = env_manager or ConfigManager()
    env_overrides = manager.load_full_config()
    if env_overrides:
        logger.debug("Environment overrides: %s", sorted(env_overrides))
    cfg = Config.from_dict({**raw, **env_overrides})
    logger.debug("Configuration values: %s", cfg)
    return cfg
