"""Tests for pipeline.config."""

import pytest

from pipeline import config as config_module
from pipeline.config import Config, find_config_file, load_config, reload_config

ENV_VARS = (
    "PHPEXT_HOME",
    "PHPEXT_CACHE_DIR",
    "PHPEXT_BUILD_DIR",
    "PHPEXT_FETCH_RETRIES",
    "PHPEXT_JOBS",
    "PHPEXT_PROVIDER",
    "PHPEXT_RUNTIME",
    "PHPEXT_LOG_LEVEL",
    "GITHUB_TOKEN",
    "GH_TOKEN",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
    config_module._config = None


class TestDefaults:

    def test_paths_derive_from_home(self, tmp_path):
        config = Config.from_dict({"paths": {"home": str(tmp_path)}})
        assert config.paths.runtimes_path == tmp_path / "php"
        assert config.paths.cache_path == tmp_path / "cache"
        assert config.paths.build_path == tmp_path / "build"

    def test_explicit_dirs_win(self, tmp_path):
        config = Config.from_dict(
            {"paths": {"home": str(tmp_path), "cache_dir": str(tmp_path / "elsewhere")}}
        )
        assert config.paths.cache_path == tmp_path / "elsewhere"

    def test_effective_jobs(self):
        config = Config()
        assert config.build.effective_jobs >= 1
        config.build.jobs = 3
        assert config.build.effective_jobs == 3

    def test_no_file_means_defaults(self):
        config = load_config()
        assert config.providers.default == "pecl"
        assert config.fetch.retries == 3


class TestLoadConfig:

    def test_reads_toml(self, tmp_path):
        (tmp_path / "phpext.toml").write_text(
            'log_level = "DEBUG"\n'
            "[runtime]\n"
            'active = "8.2"\n'
            "[build]\n"
            "jobs = 8\n"
        )

        config = load_config()

        assert config.log_level == "DEBUG"
        assert config.runtime.active == "8.2"
        assert config.build.jobs == 8

    def test_found_in_parent_directory(self, tmp_path, monkeypatch):
        (tmp_path / "phpext.toml").write_text("")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        assert find_config_file() == tmp_path / "phpext.toml"

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        (tmp_path / "phpext.toml").write_text('[runtime]\nactive = "8.1"\n')
        monkeypatch.setenv("PHPEXT_RUNTIME", "8.3")
        monkeypatch.setenv("PHPEXT_JOBS", "12")
        monkeypatch.setenv("GH_TOKEN", "ghp_x")
        monkeypatch.setenv("PHPEXT_LOG_LEVEL", "warning")

        config = load_config()

        assert config.runtime.active == "8.3"
        assert config.build.jobs == 12
        assert config.providers.github_token == "ghp_x"
        assert config.log_level == "warning"

    def test_invalid_int_env_is_ignored(self, monkeypatch):
        monkeypatch.setenv("PHPEXT_FETCH_RETRIES", "many")
        assert load_config().fetch.retries == 3

    def test_unknown_key_is_rejected(self, tmp_path):
        path = tmp_path / "custom.toml"
        path.write_text("[build]\nthreads = 4\n")
        with pytest.raises(TypeError):
            load_config(path)

    def test_reload_replaces_global(self, tmp_path):
        path = tmp_path / "custom.toml"
        path.write_text('[providers]\ndefault = "github"\n')
        assert reload_config(path).providers.default == "github"
        assert config_module.get_config().providers.default == "github"
