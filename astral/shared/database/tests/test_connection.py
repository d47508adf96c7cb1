"""Tests for database connection manager."""
import json
import pytest
from unittest.mock import MagicMock, patch

from astral.shared.utils import configure_pii_salt
from astral.shared.database.connection import DatabaseConfig, ConnectionManager


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


class TestDatabaseConfig:
    """Tests for DatabaseConfig dataclass."""

    def test_default_values(self):
        config = DatabaseConfig(host="localhost")

        assert config.host == "localhost"
        assert config.port == 5432
        assert config.database == "astral"
        assert config.min_connections == 2
        assert config.max_connections == 10
        assert config.ssl_mode == "require"

    def test_from_env(self):
        with patch.dict("os.environ", {
            "DB_HOST": "env-host",
            "DB_PORT": "5434",
            "DB_NAME": "env_db",
            "DB_USER": "env_user",
            "DB_PASSWORD": "env_pass",
        }):
            config = DatabaseConfig.from_env()

            assert config.host == "env-host"
            assert config.port == 5434
            assert config.database == "env_db"
            assert config.username == "env_user"
            assert config.password == "env_pass"

    def test_from_env_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            config = DatabaseConfig.from_env()

            assert config.host == "localhost"
            assert config.port == 5432
            assert config.database == "astral"

    def test_from_secrets_manager(self):
        client = MagicMock()
        client.get_secret_value.return_value = {
            "SecretString": json.dumps({
                "host": "secret-host",
                "port": 5435,
                "dbname": "secret_db",
                "username": "svc",
                "password": "pw",
            })
        }

        with patch("boto3.client", return_value=client) as factory:
            config = DatabaseConfig.from_secrets_manager("arn:secret", region="us-west-2")

        factory.assert_called_once_with("secretsmanager", region_name="us-west-2")
        assert config.host == "secret-host"
        assert config.port == 5435
        assert config.database == "secret_db"
        assert config.username == "svc"

    def test_from_secrets_manager_propagates_errors(self):
        client = MagicMock()
        client.get_secret_value.side_effect = RuntimeError("access denied")

        with patch("boto3.client", return_value=client):
            with pytest.raises(RuntimeError):
                DatabaseConfig.from_secrets_manager("arn:secret")


class TestConnectionManager:
    """Tests for ConnectionManager class."""

    @pytest.fixture
    def fake_pool(self):
        with patch("astral.shared.database.connection.pool.ThreadedConnectionPool") as cls:
            yield cls

    def test_initialization(self):
        config = DatabaseConfig(host="localhost")
        manager = ConnectionManager(config)

        assert manager.config == config
        assert manager.initialized is False

    def test_initialize_creates_pool_once(self, fake_pool):
        manager = ConnectionManager(DatabaseConfig(host="db", database="astral_test"))

        manager.initialize()
        manager.initialize()

        fake_pool.assert_called_once()
        kwargs = fake_pool.call_args.kwargs
        assert kwargs["host"] == "db"
        assert kwargs["database"] == "astral_test"
        assert kwargs["sslmode"] == "require"
        assert manager.initialized is True

    def test_initialize_failure_raises(self, fake_pool):
        fake_pool.side_effect = RuntimeError("connection refused")
        manager = ConnectionManager(DatabaseConfig(host="db"))

        with pytest.raises(RuntimeError):
            manager.initialize()
        assert manager.initialized is False

    def test_get_connection_returns_connection_to_pool(self, fake_pool):
        conn = MagicMock()
        fake_pool.return_value.getconn.return_value = conn
        manager = ConnectionManager(DatabaseConfig(host="db"))

        with manager.get_connection() as c:
            assert c is conn

        fake_pool.return_value.putconn.assert_called_once_with(conn)

    def test_get_connection_returns_connection_on_error(self, fake_pool):
        conn = MagicMock()
        fake_pool.return_value.getconn.return_value = conn
        manager = ConnectionManager(DatabaseConfig(host="db"))

        with pytest.raises(ValueError):
            with manager.get_connection():
                raise ValueError("boom")

        fake_pool.return_value.putconn.assert_called_once_with(conn)

    def test_health_check_not_initialized(self):
        manager = ConnectionManager(DatabaseConfig(host="localhost"))

        health = manager.health_check()

        assert health["status"] == "not_initialized"
        assert health["healthy"] is False

    def test_health_check_connected(self, fake_pool):
        manager = ConnectionManager(DatabaseConfig(host="db"))
        manager.initialize()

        health = manager.health_check()

        assert health["status"] == "connected"
        assert health["healthy"] is True

    def test_health_check_error(self, fake_pool):
        fake_pool.return_value.getconn.side_effect = RuntimeError("pool exhausted")
        manager = ConnectionManager(DatabaseConfig(host="db"))
        manager.initialize()

        health = manager.health_check()

        assert health["status"] == "error"
        assert health["healthy"] is False

    def test_close(self, fake_pool):
        manager = ConnectionManager(DatabaseConfig(host="db"))
        manager.initialize()

        manager.close()

        fake_pool.return_value.closeall.assert_called_once()
        assert manager.initialized is False
