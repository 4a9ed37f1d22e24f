from sqlalchemy import inspect

from database.connection import resolve_database_url
from database.performance_indexes import PERFORMANCE_INDEXES, create_performance_indexes


def test_resolve_database_url() -> None:
    assert resolve_database_url("postgres://u:p@host/db") == "postgresql://u:p@host/db"
    assert resolve_database_url("sqlite:///x.db") == "sqlite:///x.db"


def test_performance_indexes_are_created_once(engine) -> None:
    assert create_performance_indexes() == len(PERFORMANCE_INDEXES)
    # second run finds them in place
    assert create_performance_indexes() == len(PERFORMANCE_INDEXES)

    names = {index["name"] for index in inspect(engine).get_indexes("calls")}
    assert "idx_calls_status_tech_created" in names
