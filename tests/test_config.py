"""Tests for db.toml loading, environment overrides, and model files."""

import textwrap
from pathlib import Path

import pytest

from db_lifecycle.config.loader import (
    ProfileNotFoundError,
    get_active_profile_name,
    load_db_config,
    load_model_descriptors,
    resolve_url,
)
from db_lifecycle.config.models import (
    DatabaseConfig,
    DatabaseProfile,
    Environment,
    LifecycleConfig,
)
from db_lifecycle.errors import InvalidDescriptorError

OVERRIDE_VARS = ("DB_PROFILE", "DB_ENV", "USE_MIGRATION_FILES", "ALLOW_DB_SYNC")


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in OVERRIDE_VARS:
        monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv(f"APP_{name}", raising=False)


def write_config(tmp_path: Path, body: str) -> Path:
    config_file = tmp_path / "db.toml"
    config_file.write_text(textwrap.dedent(body))
    return config_file


class TestLoadDbConfig:
    """Test load_db_config() TOML parsing functionality."""

    def test_profiles_and_lifecycle(self, tmp_path: Path) -> None:
        """Profiles and the [lifecycle] section are both parsed."""
        config_file = write_config(
            tmp_path,
            """\
            [profiles.local]
            url = "postgresql://localhost/app"
            description = "Local database"

            [lifecycle]
            environment = "production"
            index_ceiling = 16
            allow_sync_in_production = true
            """,
        )

        config = load_db_config(config_path=config_file)

        assert isinstance(config, DatabaseConfig)
        assert config.profiles["local"].description == "Local database"
        assert config.lifecycle.environment is Environment.PRODUCTION
        assert config.lifecycle.is_production
        assert config.lifecycle.index_ceiling == 16
        assert config.lifecycle.allow_sync_in_production is True

    def test_defaults_without_lifecycle_section(self, tmp_path: Path) -> None:
        """A missing [lifecycle] section yields development defaults."""
        config_file = write_config(
            tmp_path,
            """\
            [profiles.local]
            url = "postgresql://localhost/app"
            """,
        )

        lifecycle = load_db_config(config_path=config_file).lifecycle

        assert lifecycle.environment is Environment.DEVELOPMENT
        assert lifecycle.index_ceiling == 64
        assert lifecycle.use_migration_files is False
        assert lifecycle.migrations_dir == str(tmp_path / "migrations")
        assert lifecycle.models_file == str(tmp_path / "models.toml")

    def test_relative_paths_resolved_against_config(self, tmp_path: Path) -> None:
        config_file = write_config(
            tmp_path,
            """\
            [lifecycle]
            migrations_dir = "db/migrations"
            models_file = "/etc/app/models.toml"
            """,
        )

        lifecycle = load_db_config(config_path=config_file).lifecycle

        assert lifecycle.migrations_dir == str(tmp_path / "db" / "migrations")
        assert lifecycle.models_file == "/etc/app/models.toml"

    def test_file_not_found_raises(self) -> None:
        with pytest.raises(FileNotFoundError, match="Database config not found"):
            load_db_config(config_path=Path("/nonexistent/path/db.toml"))

    def test_default_path_reads_from_cwd(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        write_config(
            tmp_path,
            """\
            [profiles.test]
            url = "postgresql://localhost/testdb"
            """,
        )
        monkeypatch.chdir(tmp_path)

        assert "test" in load_db_config().profiles

    def test_invalid_lifecycle_raises_value_error(self, tmp_path: Path) -> None:
        config_file = write_config(
            tmp_path,
            """\
            [lifecycle]
            index_ceiling = 0
            """,
        )
        with pytest.raises(ValueError, match="Invalid \\[lifecycle\\] section"):
            load_db_config(config_path=config_file)


class TestEnvironmentOverrides:
    """DB_ENV, USE_MIGRATION_FILES and ALLOW_DB_SYNC override the file."""

    def test_overrides_win(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_file = write_config(
            tmp_path,
            """\
            [lifecycle]
            environment = "development"
            """,
        )
        monkeypatch.setenv("DB_ENV", "Production")
        monkeypatch.setenv("USE_MIGRATION_FILES", "yes")
        monkeypatch.setenv("ALLOW_DB_SYNC", "1")

        lifecycle = load_db_config(config_path=config_file).lifecycle

        assert lifecycle.environment is Environment.PRODUCTION
        assert lifecycle.use_migration_files is True
        assert lifecycle.allow_sync_in_production is True

    def test_prefix_is_applied(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Only prefixed variables are read when a prefix is given."""
        config_file = write_config(tmp_path, "")
        monkeypatch.setenv("DB_ENV", "production")
        monkeypatch.setenv("APP_DB_ENV", "test")

        lifecycle = load_db_config(config_path=config_file, env_prefix="APP_").lifecycle

        assert lifecycle.environment is Environment.TEST

    def test_bad_boolean(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_file = write_config(tmp_path, "")
        monkeypatch.setenv("ALLOW_DB_SYNC", "maybe")
        with pytest.raises(ValueError, match="ALLOW_DB_SYNC must be a boolean"):
            load_db_config(config_path=config_file)

    def test_unknown_environment(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_file = write_config(tmp_path, "")
        monkeypatch.setenv("DB_ENV", "staging")
        with pytest.raises(ValueError):
            load_db_config(config_path=config_file)


class TestLifecycleConfig:
    def test_latency_thresholds_ordered(self) -> None:
        """critical_latency_ms must exceed warn_latency_ms."""
        with pytest.raises(ValueError, match="critical_latency_ms"):
            LifecycleConfig(warn_latency_ms=500, critical_latency_ms=100)


class TestProfiles:
    def test_env_var_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        config = DatabaseConfig(
            profiles={
                "a": DatabaseProfile(url="postgresql://a/db"),
                "b": DatabaseProfile(url="postgresql://b/db"),
            }
        )
        monkeypatch.setenv("APP_DB_PROFILE", "b")
        assert get_active_profile_name(config, env_prefix="APP_") == "b"

    def test_single_profile_is_default(self) -> None:
        config = DatabaseConfig(profiles={"only": DatabaseProfile(url="postgresql://h/db")})
        assert get_active_profile_name(config) == "only"

    def test_ambiguous_profiles_raise(self) -> None:
        config = DatabaseConfig(
            profiles={
                "a": DatabaseProfile(url="postgresql://a/db"),
                "b": DatabaseProfile(url="postgresql://b/db"),
            }
        )
        with pytest.raises(ProfileNotFoundError, match="Available profiles: a, b"):
            get_active_profile_name(config)

    def test_resolve_url_substitutes_password(self) -> None:
        profile = DatabaseProfile(
            url="postgresql://u:[YOUR-PASSWORD]@h/db", db_password="p@ss/word"
        )
        assert resolve_url(profile) == "postgresql://u:p%40ss%2Fword@h/db"

    def test_resolve_url_without_placeholder(self) -> None:
        profile = DatabaseProfile(url="postgresql://u:x@h/db", db_password="ignored")
        assert resolve_url(profile) == "postgresql://u:x@h/db"


class TestLoadModelDescriptors:
    """load_model_descriptors() reads [[models]] tables."""

    def test_parses_models(self, tmp_path: Path) -> None:
        models_file = tmp_path / "models.toml"
        models_file.write_text(
            textwrap.dedent(
                """\
                [[models]]
                name = "User"
                table = "users"
                fields = [
                    { name = "id", type = "SERIAL", primary_key = true },
                    { name = "email", type = "VARCHAR(255)", nullable = false },
                ]
                indexes = [{ name = "idx_users_email", fields = ["email"], unique = true }]

                [[models]]
                name = "Post"
                table = "posts"
                fields = [{ name = "id", type = "SERIAL", primary_key = true }]
                foreign_keys = [{ field = "user_id", references_table = "users" }]
                """
            )
        )

        descriptors = load_model_descriptors(models_file)

        assert [d.name for d in descriptors] == ["User", "Post"]
        user = descriptors[0]
        assert user.primary_key == ("id",)
        assert user.indexes[0].fields == ("email",)
        assert user.indexes[0].unique is True
        assert descriptors[1].foreign_keys[0].references_field == "id"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="Models file not found"):
            load_model_descriptors(tmp_path / "models.toml")

    def test_malformed_entry(self, tmp_path: Path) -> None:
        """A descriptor missing its table names the offending model."""
        models_file = tmp_path / "models.toml"
        models_file.write_text('[[models]]\nname = "Broken"\n')
        with pytest.raises(InvalidDescriptorError, match="Model Broken"):
            load_model_descriptors(models_file)
