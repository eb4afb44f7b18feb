import pytest
from sqlalchemy import create_engine, inspect

from app.fleet.models import Base
from scripts import init_db, release, start


def test_seed_only_is_idempotent(tmp_path):
    url = f"sqlite:///{tmp_path/'seed.db'}"
    first = init_db.seed_only(database_url=url, admin_email="Ops@Example.com", admin_password="Passw0rd!", create_all=True)
    again = init_db.seed_only(database_url=url, admin_email="ops@example.com", admin_password="Other123")
    assert first == again
    assert first["admin_email"] == "ops@example.com"


def test_release_requires_database_url():
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        release.release_database_url({})
    with pytest.raises(RuntimeError, match="sqlite"):
        release.release_database_url({"DATABASE_URL": "sqlite:///x.db", "ENV": "production"})
    assert release.release_database_url({"DATABASE_URL": " postgresql://db/fleet "}) == "postgresql://db/fleet"


def test_migrations_build_the_model_schema(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'migrated.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    release.run_release()

    tables = set(inspect(create_engine(url)).get_table_names())
    assert set(Base.metadata.tables) <= tables
    assert "alembic_version" in tables


def test_start_port_and_gunicorn_command():
    assert start.resolve_port(None) == 8080
    assert start.resolve_port(" 5000 ") == 5000
    with pytest.raises(ValueError):
        start.resolve_port("70000")
    with pytest.raises(ValueError):
        start.resolve_port("http")

    argv = start.gunicorn_argv(5000, 3)
    assert argv[:2] == ["gunicorn", "app.wsgi:app"]
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:5000"
    assert argv[argv.index("--workers") + 1] == "3"
