"""Configuration parsing for buildmetrics.

Parses .buildmetrics/config.toml files for job tracking patterns, tag
sources and per-job tag overrides.

Example:
    [buildmetrics]
    api_key = "..."
    hostname = "ci-primary"
    emit_node_tag = true

    [jobs]
    excluded = "sandbox/.*, scratch-.*"
    included = ""

    [tags]
    global_tags = "team:infra"
    global_job_tags = "(.*?)-deploy, service:$1"
    global_tag_file = "ci/tags.properties"

    [jobs.overrides."Platform/api-build"]
    tag_file = "ci/api.tags"
    tag_properties = "tier=backend"
"""

from __future__ import annotations

import os
import re
import threading
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from buildmetrics.tags import split_lines, split_items, split_patterns

CONFIG_DIR = ".buildmetrics"
CONFIG_FILE = "config.toml"


class ConfigError(ValueError):
    """Raised when a configuration value is invalid."""


class PatternConfigError(ConfigError):
    """Raised when an operator-supplied regular expression does not compile."""

    def __init__(self, setting: str, pattern: str, error: re.error):
        self.setting = setting
        self.pattern = pattern
        super().__init__(f"Invalid pattern {pattern!r} in '{setting}': {error}")


def compile_pattern(setting: str, pattern: str) -> re.Pattern[str]:
    """Compile a configured pattern, raising PatternConfigError on failure."""
    try:
        return re.compile(pattern)
    except re.error as e:
        raise PatternConfigError(setting, pattern, e) from e


@dataclass(frozen=True)
class JobTagRule:
    """One line of the global job tags setting.

    Attributes:
        pattern: Compiled job-name pattern, matched against the full job name.
        items: The raw ``name:value`` tag items that follow the pattern.
    """

    pattern: re.Pattern[str]
    items: tuple[str, ...]


@dataclass(frozen=True)
class GlobalConfig:
    """Global plugin configuration.

    Instances are immutable. Patterns are compiled on construction so an
    invalid expression is reported when the configuration is built rather
    than silently never matching.
    """

    api_key: str | None = None
    hostname: str | None = None
    excluded: str = ""
    included: str = ""
    global_tags: str = ""
    global_job_tags: str = ""
    global_tag_file: str | None = None
    emit_node_tag: bool = True
    emit_build_events: bool = True
    excluded_patterns: tuple[re.Pattern[str], ...] = field(init=False, repr=False, compare=False)
    included_patterns: tuple[re.Pattern[str], ...] = field(init=False, repr=False, compare=False)
    job_tag_rules: tuple[JobTagRule, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        excluded = tuple(
            compile_pattern("excluded", p) for p in split_patterns(self.excluded)
        )
        included = tuple(
            compile_pattern("included", p) for p in split_patterns(self.included)
        )
        rules = []
        for line in split_lines(self.global_job_tags):
            items = split_items(line)
            if not items:
                continue
            rules.append(
                JobTagRule(
                    pattern=compile_pattern("global_job_tags", items[0]),
                    items=tuple(items[1:]),
                )
            )
        # Frozen dataclass: derived fields are set through object.__setattr__
        object.__setattr__(self, "excluded_patterns", excluded)
        object.__setattr__(self, "included_patterns", included)
        object.__setattr__(self, "job_tag_rules", tuple(rules))

    def is_job_excluded(self, job_name: str) -> bool:
        """Check if a job name fully matches any excluded pattern."""
        return any(p.fullmatch(job_name) for p in self.excluded_patterns)

    def is_job_included(self, job_name: str) -> bool:
        """Check if a job name is included.

        An empty include list includes every job.
        """
        if not self.included_patterns:
            return True
        return any(p.fullmatch(job_name) for p in self.included_patterns)

    def is_job_tracked(self, job_name: str) -> bool:
        """Exclusion wins over inclusion."""
        return not self.is_job_excluded(job_name) and self.is_job_included(job_name)

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GlobalConfig:
        """Create a GlobalConfig from the parsed TOML document.

        Args:
            data: The full TOML document as a dictionary.

        Returns:
            A configured GlobalConfig instance.

        Raises:
            ConfigError: If a value has the wrong type.
            PatternConfigError: If a pattern does not compile.
        """
        main = data.get("buildmetrics", {})
        jobs = data.get("jobs", {})
        tags = data.get("tags", {})

        api_key = main.get("api_key") or os.environ.get("DD_API_KEY")
        hostname = main.get("hostname") or os.environ.get("DD_HOSTNAME")

        return cls(
            api_key=api_key,
            hostname=hostname,
            excluded=_text_setting(jobs, "excluded"),
            included=_text_setting(jobs, "included"),
            global_tags=_text_setting(tags, "global_tags"),
            global_job_tags=_text_setting(tags, "global_job_tags"),
            global_tag_file=tags.get("global_tag_file") or None,
            emit_node_tag=_bool_setting(main, "emit_node_tag", True),
            emit_build_events=_bool_setting(main, "emit_build_events", True),
        )


@dataclass(frozen=True)
class JobConfig:
    """Per-job tag configuration."""

    tag_file: str | None = None
    tag_properties: str | None = None

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> JobConfig:
        """Create a JobConfig from a ``[jobs.overrides."<name>"]`` table.

        Raises:
            ConfigError: If a value is not a string.
        """
        for key in ("tag_file", "tag_properties"):
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise ConfigError(f"Job '{name}' has invalid '{key}': expected string")
        return cls(
            tag_file=data.get("tag_file") or None,
            tag_properties=data.get("tag_properties") or None,
        )


def _text_setting(section: dict[str, Any], key: str) -> str:
    value = section.get(key, "")
    if isinstance(value, list):
        return "\n".join(str(v) for v in value)
    if not isinstance(value, str):
        raise ConfigError(f"Setting '{key}' must be a string or list of strings")
    return value


def _bool_setting(section: dict[str, Any], key: str, default: bool) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"Setting '{key}' must be a boolean")
    return value


@dataclass
class Config:
    """Main configuration container."""

    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    jobs: dict[str, JobConfig] = field(default_factory=dict)
    config_path: Path | None = None

    @classmethod
    def load(cls, path: Path | None = None) -> Config:
        """Load configuration from a file.

        Args:
            path: Path to config file. If None, searches for
                  .buildmetrics/config.toml in current directory and parents.

        Returns:
            Loaded configuration.

        Raises:
            FileNotFoundError: If no config file found.
            ConfigError: If config file is invalid.
        """
        if path is None:
            path = cls._find_config()

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "rb") as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigError(f"Invalid TOML in {path}: {e}") from e

        return cls._from_dict(data, path)

    @classmethod
    def load_or_default(cls, path: Path | None = None) -> Config:
        """Load configuration or return default if not found."""
        try:
            return cls.load(path)
        except FileNotFoundError:
            return cls()

    @classmethod
    def _find_config(cls) -> Path:
        """Find config file by searching current directory and parents."""
        cwd = Path.cwd()
        for parent in [cwd, *cwd.parents]:
            config_path = parent / CONFIG_DIR / CONFIG_FILE
            if config_path.exists():
                return config_path

        # Return expected path even if it doesn't exist
        return cwd / CONFIG_DIR / CONFIG_FILE

    @classmethod
    def _from_dict(cls, data: dict[str, Any], path: Path | None) -> Config:
        """Create a Config from a dictionary."""
        global_config = GlobalConfig.from_dict(data)

        jobs: dict[str, JobConfig] = {}
        overrides = data.get("jobs", {}).get("overrides", {})
        for name, job_data in overrides.items():
            jobs[name] = JobConfig.from_dict(name, job_data)

        return cls(global_config=global_config, jobs=jobs, config_path=path)

    def job_config_for(self, job_name: str) -> JobConfig | None:
        """Get the per-job configuration, or None if the job has none."""
        return self.jobs.get(job_name)


class ConfigHolder:
    """Holds the current configuration for concurrent readers.

    ``get`` always returns a complete snapshot; ``replace`` swaps in a new
    one. A reader may see a stale snapshot but never a partial one.
    """

    def __init__(self, config: Config | None = None):
        self._lock = threading.Lock()
        self._config = config if config is not None else Config()

    def get(self) -> Config:
        with self._lock:
            return self._config

    def replace(self, config: Config) -> Config:
        """Install a new configuration, returning the previous one."""
        with self._lock:
            previous = self._config
            self._config = config
            return previous

    def reload(self, path: Path | None = None) -> Config:
        """Load configuration from disk and install it.

        A config that fails validation leaves the current one in place.
        """
        config = Config.load_or_default(path)
        self.replace(config)
        return config
