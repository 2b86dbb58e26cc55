"""Tests for configuration parsing."""

import threading
from pathlib import Path

import pytest

from buildmetrics.config import (
    Config,
    ConfigError,
    ConfigHolder,
    GlobalConfig,
    JobConfig,
    PatternConfigError,
)


@pytest.fixture(autouse=True)
def no_env_fallbacks(monkeypatch):
    """Keep DD_* variables of the test runner out of loaded configs."""
    monkeypatch.delenv("DD_API_KEY", raising=False)
    monkeypatch.delenv("DD_HOSTNAME", raising=False)


class TestJobTracking:
    """Tests for include/exclude pattern evaluation."""

    def test_defaults_track_everything(self):
        """Test an empty configuration tracks every job."""
        config = GlobalConfig()
        assert config.is_job_tracked("anything/at/all")

    def test_exclusion(self):
        """Test an excluded job is not tracked."""
        config = GlobalConfig(excluded="sandbox/.*, scratch-.*")
        assert not config.is_job_tracked("sandbox/try")
        assert not config.is_job_tracked("scratch-1")
        assert config.is_job_tracked("platform/api")

    def test_full_match_only(self):
        """Test patterns must match the whole job name."""
        config = GlobalConfig(excluded="sandbox")
        assert config.is_job_tracked("sandbox/try")
        assert not config.is_job_tracked("sandbox")

    def test_inclusion(self):
        """Test a non-empty include list restricts tracking."""
        config = GlobalConfig(included="platform/.*\nrelease")
        assert config.is_job_tracked("platform/api")
        assert config.is_job_tracked("release")
        assert not config.is_job_tracked("sandbox/try")

    def test_exclusion_precedes_inclusion(self):
        """Test a job matching both lists is excluded."""
        config = GlobalConfig(excluded="platform/legacy", included="platform/.*")
        assert not config.is_job_tracked("platform/legacy")
        assert config.is_job_tracked("platform/api")


class TestPatternValidation:
    """Tests for invalid operator patterns."""

    @pytest.mark.parametrize(
        "kwargs,setting",
        [
            ({"excluded": "ok, bad[("}, "excluded"),
            ({"included": "(unclosed"}, "included"),
            ({"global_job_tags": "good-.*, a:b\n*bad, c:d"}, "global_job_tags"),
        ],
    )
    def test_bad_pattern_raises(self, kwargs, setting):
        """Test a pattern that does not compile is reported, not ignored."""
        with pytest.raises(PatternConfigError) as exc_info:
            GlobalConfig(**kwargs)
        assert exc_info.value.setting == setting
        assert isinstance(exc_info.value, ConfigError)

    def test_job_tag_rules_compiled(self):
        """Test global job tag lines become rules."""
        config = GlobalConfig(global_job_tags="(.*?)-deploy, service:$1, canary\n\nnightly")
        assert len(config.job_tag_rules) == 2
        assert config.job_tag_rules[0].items == ("service:$1", "canary")
        assert config.job_tag_rules[1].items == ()


class TestGlobalConfigFromDict:
    """Tests for GlobalConfig.from_dict."""

    def test_full_document(self):
        """Test every section is read."""
        data = {
            "buildmetrics": {
                "api_key": "k",
                "hostname": "ci-primary",
                "emit_node_tag": False,
                "emit_build_events": False,
            },
            "jobs": {"excluded": ["a", "b"], "included": "c"},
            "tags": {
                "global_tags": "team:infra",
                "global_job_tags": "(.*), x:$1",
                "global_tag_file": "tags.txt",
            },
        }
        config = GlobalConfig.from_dict(data)

        assert config.api_key == "k"
        assert config.hostname == "ci-primary"
        assert config.emit_node_tag is False
        assert config.emit_build_events is False
        assert config.excluded == "a\nb"
        assert config.included == "c"
        assert config.global_tags == "team:infra"
        assert config.global_tag_file == "tags.txt"
        assert config.has_api_key

    def test_env_fallbacks(self, monkeypatch):
        """Test DD_API_KEY and DD_HOSTNAME fill missing values."""
        monkeypatch.setenv("DD_API_KEY", "from-env")
        monkeypatch.setenv("DD_HOSTNAME", "env-host")
        config = GlobalConfig.from_dict({})
        assert config.api_key == "from-env"
        assert config.hostname == "env-host"

    def test_invalid_bool(self):
        """Test non-boolean flags are rejected."""
        with pytest.raises(ConfigError, match="emit_node_tag"):
            GlobalConfig.from_dict({"buildmetrics": {"emit_node_tag": "yes"}})

    def test_invalid_text(self):
        """Test non-string pattern settings are rejected."""
        with pytest.raises(ConfigError, match="excluded"):
            GlobalConfig.from_dict({"jobs": {"excluded": 3}})

    def test_blank_api_key(self):
        """Test a whitespace API key counts as missing."""
        assert not GlobalConfig(api_key="  ").has_api_key


class TestJobConfig:
    """Tests for JobConfig.from_dict."""

    def test_from_dict(self):
        """Test tag file and properties are read."""
        job = JobConfig.from_dict("a/b", {"tag_file": "t.txt", "tag_properties": "x=y"})
        assert job.tag_file == "t.txt"
        assert job.tag_properties == "x=y"

    def test_empty_values_are_none(self):
        """Test empty strings become None."""
        job = JobConfig.from_dict("a/b", {"tag_file": ""})
        assert job.tag_file is None
        assert job.tag_properties is None

    def test_invalid_type(self):
        """Test a non-string value names the job."""
        with pytest.raises(ConfigError) as exc_info:
            JobConfig.from_dict("a/b", {"tag_file": 1})
        assert "a/b" in str(exc_info.value)


class TestConfigLoad:
    """Tests for loading config files."""

    def test_load(self, tmp_path):
        """Test loading a TOML file with job overrides."""
        path = tmp_path / "config.toml"
        path.write_text(
            '[buildmetrics]\napi_key = "abc"\n\n'
            '[jobs]\nexcluded = "sandbox/.*"\n\n'
            '[jobs.overrides."Platform/api"]\ntag_properties = "tier=backend"\n'
        )

        config = Config.load(path)

        assert config.config_path == path
        assert config.global_config.api_key == "abc"
        assert not config.global_config.is_job_tracked("sandbox/x")
        assert config.job_config_for("Platform/api") == JobConfig(tag_properties="tier=backend")
        assert config.job_config_for("Other") is None

    def test_load_missing_file(self, tmp_path):
        """Test a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            Config.load(tmp_path / "missing.toml")

    def test_load_or_default(self, tmp_path):
        """Test defaults are returned when no file exists."""
        config = Config.load_or_default(tmp_path / "missing.toml")
        assert config.global_config == GlobalConfig()
        assert config.jobs == {}

    def test_invalid_toml(self, tmp_path):
        """Test malformed TOML is a ConfigError."""
        path = tmp_path / "config.toml"
        path.write_text("[buildmetrics\n")
        with pytest.raises(ConfigError):
            Config.load(path)

    def test_bad_pattern_in_file(self, tmp_path):
        """Test an invalid pattern in the file fails the load."""
        path = tmp_path / "config.toml"
        path.write_text('[jobs]\nincluded = "(oops"\n')
        with pytest.raises(PatternConfigError):
            Config.load(path)

    def test_find_config_in_parent(self, tmp_path, monkeypatch):
        """Test the config is found in a parent directory."""
        config_dir = tmp_path / ".buildmetrics"
        config_dir.mkdir()
        (config_dir / "config.toml").write_text('[buildmetrics]\napi_key = "p"\n')
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)

        config = Config.load()

        assert config.global_config.api_key == "p"


class TestConfigHolder:
    """Tests for ConfigHolder."""

    def test_replace_returns_previous(self):
        """Test replace swaps snapshots."""
        first = Config()
        second = Config(global_config=GlobalConfig(api_key="k"))
        holder = ConfigHolder(first)

        assert holder.replace(second) is first
        assert holder.get() is second

    def test_reload_keeps_current_on_error(self, tmp_path):
        """Test a failed reload leaves the current snapshot in place."""
        current = Config(global_config=GlobalConfig(api_key="k"))
        holder = ConfigHolder(current)
        path = tmp_path / "config.toml"
        path.write_text('[jobs]\nexcluded = "[bad"\n')

        with pytest.raises(PatternConfigError):
            holder.reload(path)

        assert holder.get() is current

    def test_readers_see_whole_snapshots(self):
        """Test concurrent readers only ever see installed snapshots."""
        configs = [Config(global_config=GlobalConfig(api_key=str(i))) for i in range(20)]
        holder = ConfigHolder(configs[0])
        seen = []

        def reader():
            for _ in range(200):
                seen.append(holder.get())

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for thread in threads:
            thread.start()
        for config in configs:
            holder.replace(config)
        for thread in threads:
            thread.join()

        assert all(any(s is c for c in configs) for s in seen)
