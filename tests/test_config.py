"""
Tests for tagctx/config.py configuration management.

Tests the hierarchical configuration system with sensible defaults,
including file loading, environment variables, and path expansion.
"""
import logging
from pathlib import Path

import pytest
import tomli

import tagctx.config as config_module
from tagctx.config import TagctxConfig, configure_logging, get_config, init_config


@pytest.fixture
def fresh_global_config(monkeypatch):
    """Reset the global configuration for the duration of a test."""
    monkeypatch.setattr(config_module, "_config", None)


class TestTagctxConfigDefaults:
    """Test default configuration values."""

    def test_default_database(self):
        assert TagctxConfig().database == "tagctx.db"

    def test_default_database_url_is_none(self):
        assert TagctxConfig().database_url is None

    def test_default_echo_off(self):
        assert TagctxConfig().database_echo is False

    def test_default_pool(self):
        config = TagctxConfig()
        assert config.connection_pool_size == 5
        assert config.connection_timeout == 30

    def test_default_log_level(self):
        assert TagctxConfig().log_level == "INFO"


class TestConfigLoading:
    """Test configuration loading from files."""

    def test_load_without_files_gives_defaults(self, clean_tagctx_env):
        config = TagctxConfig.load()
        assert config.database == "tagctx.db"
        assert config.database_echo is False

    def test_load_from_local_toml(self, clean_tagctx_env):
        (clean_tagctx_env / "tagctx.toml").write_text('database = "local.db"\n')
        assert TagctxConfig.load().database == "local.db"

    def test_load_from_rc(self, clean_tagctx_env):
        (clean_tagctx_env / ".tagctxrc").write_text("connection_timeout = 5\n")
        assert TagctxConfig.load().connection_timeout == 5

    def test_local_toml_wins_over_rc(self, clean_tagctx_env):
        (clean_tagctx_env / "tagctx.toml").write_text('database = "toml.db"\n')
        (clean_tagctx_env / ".tagctxrc").write_text('database = "rc.db"\n')
        assert TagctxConfig.load().database == "toml.db"

    def test_load_from_user_config(self, clean_tagctx_env):
        user_dir = clean_tagctx_env / "home" / ".config" / "tagctx"
        user_dir.mkdir(parents=True)
        (user_dir / "config.toml").write_text('log_level = "DEBUG"\n')
        assert TagctxConfig.load().log_level == "DEBUG"

    def test_local_overrides_user(self, clean_tagctx_env):
        user_dir = clean_tagctx_env / "home" / ".config" / "tagctx"
        user_dir.mkdir(parents=True)
        (user_dir / "config.toml").write_text('database = "user.db"\nlog_level = "DEBUG"\n')
        (clean_tagctx_env / "tagctx.toml").write_text('database = "local.db"\n')

        config = TagctxConfig.load()
        assert config.database == "local.db"
        assert config.log_level == "DEBUG"

    def test_explicit_file_overrides_all(self, clean_tagctx_env):
        (clean_tagctx_env / "tagctx.toml").write_text('database = "local.db"\n')
        explicit = clean_tagctx_env / "explicit.toml"
        explicit.write_text('database = "explicit.db"\n')
        assert TagctxConfig.load(explicit).database == "explicit.db"

    def test_unknown_keys_ignored(self, clean_tagctx_env):
        (clean_tagctx_env / "tagctx.toml").write_text('nonsense = 1\n')
        config = TagctxConfig.load()
        assert not hasattr(config, "nonsense")

    def test_database_path_expanded(self, clean_tagctx_env, monkeypatch):
        monkeypatch.setenv("TAGS_DIR", "/srv/tags")
        (clean_tagctx_env / "tagctx.toml").write_text('database = "$TAGS_DIR/tags.db"\n')
        assert TagctxConfig.load().database == "/srv/tags/tags.db"


class TestEnvironmentVariables:
    """Test TAGCTX_ environment variable overrides."""

    def test_string_override(self, clean_tagctx_env, monkeypatch):
        (clean_tagctx_env / "tagctx.toml").write_text('database = "file.db"\n')
        monkeypatch.setenv("TAGCTX_DATABASE", "env.db")
        assert TagctxConfig.load().database == "env.db"

    @pytest.mark.parametrize("value,expected", [
        ("true", True), ("1", True), ("yes", True), ("false", False), ("0", False),
    ])
    def test_boolean_override(self, clean_tagctx_env, monkeypatch, value, expected):
        monkeypatch.setenv("TAGCTX_DATABASE_ECHO", value)
        assert TagctxConfig.load().database_echo is expected

    def test_integer_override(self, clean_tagctx_env, monkeypatch):
        monkeypatch.setenv("TAGCTX_CONNECTION_POOL_SIZE", "12")
        assert TagctxConfig.load().connection_pool_size == 12

    def test_optional_url_override(self, clean_tagctx_env, monkeypatch):
        monkeypatch.setenv("TAGCTX_DATABASE_URL", "postgresql://localhost/tags")
        assert TagctxConfig.load().database_url == "postgresql://localhost/tags"

    def test_unknown_env_var_ignored(self, clean_tagctx_env, monkeypatch):
        monkeypatch.setenv("TAGCTX_NOT_A_SETTING", "x")
        assert not hasattr(TagctxConfig.load(), "not_a_setting")


class TestConfigSaving:
    """Test writing configuration files."""

    def test_save_creates_parent_directories(self, tmp_path):
        path = tmp_path / "a" / "b" / "config.toml"
        TagctxConfig(database="saved.db").save(path)
        assert path.exists()

    def test_save_round_trips_and_skips_none(self, tmp_path):
        path = tmp_path / "config.toml"
        TagctxConfig(database="saved.db", connection_timeout=7).save(path)

        with open(path, "rb") as f:
            data = tomli.load(f)

        assert data["database"] == "saved.db"
        assert data["connection_timeout"] == 7
        assert "database_url" not in data
        assert TagctxConfig.load(path).connection_timeout == 7

    def test_save_to_default_location(self, clean_tagctx_env):
        TagctxConfig(log_level="WARNING").save()
        path = clean_tagctx_env / "home" / ".config" / "tagctx" / "config.toml"
        assert path.exists()
        assert TagctxConfig.load().log_level == "WARNING"


class TestDatabaseUrl:
    """Test database path and URL resolution."""

    def test_relative_path_resolved_against_cwd(self, clean_tagctx_env):
        config = TagctxConfig(database="tags.db")
        assert config.get_database_path() == Path(clean_tagctx_env) / "tags.db"
        assert config.get_database_url() == f"sqlite:///{clean_tagctx_env / 'tags.db'}"

    def test_absolute_path(self, tmp_path):
        config = TagctxConfig(database=str(tmp_path / "tags.db"))
        assert config.get_database_path() == tmp_path / "tags.db"

    def test_url_overrides_path(self):
        config = TagctxConfig(database="tags.db", database_url="postgresql://localhost/tags")
        assert config.get_database_url() == "postgresql://localhost/tags"
        assert config.is_sqlite() is False

    def test_is_sqlite(self):
        assert TagctxConfig().is_sqlite() is True


class TestGlobalConfig:
    """Test the global configuration accessors."""

    def test_get_config_cached(self, clean_tagctx_env, fresh_global_config):
        assert get_config() is get_config()

    def test_get_config_reload(self, clean_tagctx_env, fresh_global_config):
        first = get_config()
        assert get_config(reload=True) is not first

    def test_init_config_overrides(self, clean_tagctx_env, fresh_global_config):
        config = init_config(database="init.db", connection_timeout=3, log_level=None)
        assert config.database == "init.db"
        assert config.connection_timeout == 3
        assert config.log_level == "INFO"
        assert get_config() is config


class TestConfigureLogging:
    """Test logger level configuration."""

    @pytest.fixture(autouse=True)
    def restore_level(self):
        logger = logging.getLogger("tagctx")
        level = logger.level
        yield
        logger.setLevel(level)

    def test_explicit_level(self):
        configure_logging("debug")
        assert logging.getLogger("tagctx").level == logging.DEBUG

    def test_level_from_config(self, clean_tagctx_env, fresh_global_config):
        init_config(log_level="WARNING")
        configure_logging()
        assert logging.getLogger("tagctx").level == logging.WARNING

    def test_unknown_level_falls_back_to_info(self):
        configure_logging("chatty")
        assert logging.getLogger("tagctx").level == logging.INFO
