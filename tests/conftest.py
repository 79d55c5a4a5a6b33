import pytest

from impactmatrix import config, store


@pytest.fixture()
def db(tmp_path, monkeypatch):
    """Point the store at a fresh SQLite file and bootstrap it."""
    monkeypatch.setattr(config, "DB_PATH", tmp_path / "impact_matrix.db")
    monkeypatch.setattr(config, "DB_BACKEND", "sqlite")
    monkeypatch.setattr(store, "BOOTSTRAPPED", False)
    store.ensure_bootstrap()
    yield config.DB_PATH


@pytest.fixture()
def conn(db):
    connection = store.db_connect()
    try:
        yield connection
    finally:
        connection.close()


@pytest.fixture()
def matrix(conn):
    organization = store.create_organization(conn, "Acme")
    project = store.create_project(conn, "Roadmap", organization["id"])
    created = store.create_matrix(conn, "Bets", project["id"], "Next quarter")
    conn.commit()
    return created
