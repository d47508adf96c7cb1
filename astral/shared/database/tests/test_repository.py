"""Tests for base repository pattern."""
import pytest
from unittest.mock import MagicMock
from dataclasses import dataclass
from typing import Any, Dict

from astral.shared.utils import configure_pii_salt
from astral.shared.database.repository import BaseRepository, RepositoryError


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@dataclass
class SampleEntity:
    id: str
    name: str
    value: int


class SampleRepository(BaseRepository[SampleEntity]):
    """Concrete repository for testing."""

    def _row_to_entity(self, row: tuple) -> SampleEntity:
        return SampleEntity(id=row[0], name=row[1], value=row[2])

    def _entity_to_params(self, entity: SampleEntity) -> Dict[str, Any]:
        return {
            "id": entity.id,
            "name": entity.name,
            "value": entity.value,
        }


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def connection(cursor):
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn


@pytest.fixture
def repository(connection):
    manager = MagicMock()
    manager.get_connection.return_value.__enter__.return_value = connection
    return SampleRepository(manager, "sample_table")


class TestRepositoryError:
    def test_message(self):
        error = RepositoryError("Test error")
        assert str(error) == "Test error"


class TestBaseRepository:
    """Tests for BaseRepository class."""

    def test_initialization(self, repository):
        assert repository.table_name == "sample_table"

    def test_find_by_id_converts_row(self, repository, cursor):
        cursor.fetchone.return_value = ("id_1", "test_name", 42)

        entity = repository.find_by_id("id_1")

        assert entity == SampleEntity(id="id_1", name="test_name", value=42)
        sql, params = cursor.execute.call_args.args
        assert "FROM sample_table WHERE id = %s" in sql
        assert params == ("id_1",)

    def test_find_by_id_missing(self, repository, cursor):
        cursor.fetchone.return_value = None

        assert repository.find_by_id("nope") is None

    def test_find_by_id_wraps_driver_errors(self, repository, cursor):
        cursor.execute.side_effect = RuntimeError("relation does not exist")

        with pytest.raises(RepositoryError):
            repository.find_by_id("id_1")

    def test_save_upserts_and_commits(self, repository, cursor, connection):
        entity = SampleEntity(id="id_1", name="test", value=100)

        result = repository.save(entity)

        assert result is entity
        sql, values = cursor.execute.call_args.args
        assert "INSERT INTO sample_table (id, name, value)" in sql
        assert "ON CONFLICT (id) DO UPDATE SET name = EXCLUDED.name, value = EXCLUDED.value" in sql
        assert values == ["id_1", "test", 100]
        connection.commit.assert_called_once()

    def test_save_wraps_driver_errors(self, repository, cursor, connection):
        cursor.execute.side_effect = RuntimeError("disk full")

        with pytest.raises(RepositoryError):
            repository.save(SampleEntity(id="id_1", name="test", value=1))
        connection.commit.assert_not_called()

    def test_delete_reports_rowcount(self, repository, cursor):
        cursor.rowcount = 1
        assert repository.delete("id_1") is True

        cursor.rowcount = 0
        assert repository.delete("id_1") is False

    def test_list_ids(self, repository, cursor):
        cursor.fetchall.return_value = [("a",), ("b",)]

        assert repository.list_ids() == ["a", "b"]
