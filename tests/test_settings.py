"""Tests for settings loading from connection files and environment variables."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from database_mcp.engine.exceptions import ConfigurationError
from database_mcp.engine.sql import DatabaseKind
from database_mcp.settings import ConnectionSettings, SettingsLoader


class TestConnectionsFile:
    """DATABASE_CONNECTIONS_FILE in JSON and YAML."""

    def test_json_list_with_camel_case_keys(self, tmp_path: Path) -> None:
        path = tmp_path / "connections.json"
        path.write_text(
            json.dumps(
                [
                    {
                        "name": "analytics",
                        "type": "postgresql",
                        "host": "db.internal",
                        "database": "analytics",
                        "username": "reader",
                        "maxConnections": 5,
                        "connectTimeout": 3,
                    }
                ]
            )
        )

        settings = SettingsLoader(environ={"DATABASE_CONNECTIONS_FILE": str(path)}).load()

        [config] = settings.connection_configs()
        assert config.name == "analytics"
        assert config.kind is DatabaseKind.POSTGRESQL
        assert config.port == 5432
        assert config.max_connections == 5
        assert config.connect_timeout == 3

    def test_yaml_mapping_with_connections_key(self, tmp_path: Path) -> None:
        path = tmp_path / "connections.yaml"
        path.write_text(
            "connections:\n"
            "  - name: local\n"
            "    type: sqlite\n"
            "    path: ./data/local.db\n"
            "  - name: shop\n"
            "    type: mysql\n"
            "    host: mysql.internal\n"
            "    database: shop\n"
            "    username: shop\n"
        )

        settings = SettingsLoader(connections_file=path, environ={}).load()

        assert [c.name for c in settings.connections] == ["local", "shop"]
        assert settings.connections[1].kind is DatabaseKind.MYSQL

    def test_missing_file(self, tmp_path: Path) -> None:
        loader = SettingsLoader(connections_file=tmp_path / "absent.yaml", environ={})
        with pytest.raises(ConfigurationError, match="file not found"):
            loader.load()

    def test_file_must_hold_a_list(self, tmp_path: Path) -> None:
        path = tmp_path / "connections.yaml"
        path.write_text("name: lonely\n")
        with pytest.raises(ConfigurationError, match="list of connection objects"):
            SettingsLoader(connections_file=path, environ={}).load()

    def test_file_takes_priority_over_json_env(self, tmp_path: Path) -> None:
        path = tmp_path / "connections.json"
        path.write_text(json.dumps([{"name": "from_file", "type": "sqlite", "path": "a.db"}]))
        environ = {
            "DATABASE_CONNECTIONS_FILE": str(path),
            "DATABASE_CONNECTIONS": json.dumps([{"name": "from_env", "type": "sqlite", "path": "b.db"}]),
        }

        settings = SettingsLoader(environ=environ).load()

        assert [c.name for c in settings.connections] == ["from_file"]


class TestEnvironment:
    """DATABASE_CONNECTIONS and individual variables."""

    def test_database_connections_json(self) -> None:
        environ = {
            "DATABASE_CONNECTIONS": json.dumps(
                [{"name": "local", "type": "sqlite", "path": "/tmp/local.db"}]
            )
        }

        settings = SettingsLoader(environ=environ).load()

        assert settings.connections[0].path == "/tmp/local.db"

    def test_invalid_database_connections_json(self) -> None:
        loader = SettingsLoader(environ={"DATABASE_CONNECTIONS": "[{not json"})
        with pytest.raises(ConfigurationError, match="Invalid DATABASE_CONNECTIONS JSON"):
            loader.load()

    def test_individual_variables(self) -> None:
        environ = {
            "SQLITE_DB_PATH": "/tmp/app.db",
            "POSTGRES_HOST": "pg.internal",
            "POSTGRES_PORT": "6543",
            "POSTGRES_DATABASE": "app",
            "POSTGRES_USERNAME": "app",
            "POSTGRES_PASSWORD": "secret",
            "MAX_CONNECTIONS": "4",
            "CONNECTION_TIMEOUT": "12",
        }

        settings = SettingsLoader(environ=environ).load()

        by_name = {c.name: c for c in settings.connection_configs()}
        assert set(by_name) == {"sqlite", "postgres"}
        assert by_name["postgres"].port == 6543
        assert by_name["postgres"].max_connections == 4
        assert by_name["sqlite"].timeout == 12

    def test_individual_variables_override_same_name(self) -> None:
        environ = {
            "DATABASE_CONNECTIONS": json.dumps(
                [
                    {"name": "sqlite", "type": "sqlite", "path": "/tmp/old.db"},
                    {"name": "other", "type": "sqlite", "path": "/tmp/other.db"},
                ]
            ),
            "SQLITE_DB_PATH": "/tmp/new.db",
        }

        settings = SettingsLoader(environ=environ).load()

        paths = {c.name: c.path for c in settings.connections}
        assert paths == {"sqlite": "/tmp/new.db", "other": "/tmp/other.db"}

    def test_bad_port_variable(self) -> None:
        environ = {"MYSQL_HOST": "mysql.internal", "MYSQL_PORT": "abc"}
        with pytest.raises(ConfigurationError, match="MYSQL_PORT must be an integer"):
            SettingsLoader(environ=environ).load()

    def test_invalid_entry_fails_validation(self) -> None:
        environ = {"DATABASE_CONNECTIONS": json.dumps([{"name": "x", "type": "oracle"}])}
        with pytest.raises(ConfigurationError, match="Configuration validation failed"):
            SettingsLoader(environ=environ).load()

    def test_connect_on_startup(self) -> None:
        assert SettingsLoader(environ={}).load().connect_on_startup is True
        loader = SettingsLoader(environ={"DATABASE_MCP_CONNECT_ON_STARTUP": "false"})
        assert loader.load().connect_on_startup is False

    def test_no_connections(self) -> None:
        settings = SettingsLoader(environ={}).load()
        assert settings.connections == []

    def test_load_is_cached(self) -> None:
        loader = SettingsLoader(environ={})
        assert loader.load() is loader.load()


class TestConnectionSettings:
    """Field validation on a single entry."""

    def test_legacy_millisecond_timeouts(self) -> None:
        entry = ConnectionSettings.model_validate(
            {"name": "a", "type": "sqlite", "path": "a.db", "timeout": 30000, "connectTimeout": 5000}
        )
        assert entry.timeout == 30
        assert entry.connect_timeout == 5

    def test_port_range(self) -> None:
        with pytest.raises(ValueError):
            ConnectionSettings.model_validate(
                {"name": "a", "type": "postgresql", "host": "h", "port": 70000}
            )

    def test_password_hidden_from_repr(self) -> None:
        entry = ConnectionSettings.model_validate(
            {"name": "a", "type": "postgresql", "host": "h", "password": "s3cret"}
        )
        assert "s3cret" not in repr(entry)
