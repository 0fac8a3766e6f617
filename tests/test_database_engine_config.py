
def test_get_engine_kwargs_sqlite_has_check_same_thread(monkeypatch):
    # Import lazily so monkeypatch can affect env usage deterministically.
    from taskflow.database import database as db

    kwargs = db.get_engine_kwargs("sqlite:///./taskflow.db")
    assert "connect_args" in kwargs
    assert kwargs["connect_args"]["check_same_thread"] is False
    # SQLite should not require pool sizing knobs.
    assert "pool_size" not in kwargs
    assert "max_overflow" not in kwargs
    assert kwargs["pool_pre_ping"] is True


def test_get_engine_kwargs_postgres_has_conservative_pooling(monkeypatch):
    from taskflow.database import database as db

    monkeypatch.setenv("DB_POOL_SIZE", "3")
    monkeypatch.setenv("DB_MAX_OVERFLOW", "7")
    monkeypatch.setenv("DB_POOL_TIMEOUT_SEC", "12")

    kwargs = db.get_engine_kwargs("postgresql+psycopg://u:p@localhost:5432/taskflow")
    assert "connect_args" not in kwargs
    assert kwargs["pool_pre_ping"] is True
    assert kwargs["pool_size"] == 3
    assert kwargs["max_overflow"] == 7
    assert kwargs["pool_timeout"] == 12


def test_debug_env_enables_echo(monkeypatch):
    from taskflow.database import database as db

    monkeypatch.setenv("DEBUG", "true")
    assert db.get_engine_kwargs("sqlite:///./taskflow.db")["echo"] is True
    monkeypatch.setenv("DEBUG", "false")
    assert db.get_engine_kwargs("sqlite:///./taskflow.db")["echo"] is False


def test_sqlite_url_detection():
    from taskflow.database import database as db

    assert db._is_sqlite_url("sqlite:///./taskflow.db") is True
    assert db._is_sqlite_url("postgresql+psycopg://u:p@localhost/db") is False
    assert db._is_sqlite_url("") is False


def test_create_all_builds_every_table(tmp_path):
    """A fresh SQLite file gets the full schema from the models."""
    from sqlalchemy import inspect
    from taskflow.database import database as db
    from taskflow.database import models  # noqa: F401

    engine = db.build_engine(f"sqlite:///{tmp_path / 'fresh.db'}")
    db.Base.metadata.create_all(bind=engine)

    tables = set(inspect(engine).get_table_names())
    assert {
        "users",
        "tasks",
        "draft_tasks",
        "gmail_integrations",
        "slack_integrations",
        "telegram_integrations",
        "telegram_messages",
        "telegram_link_codes",
    } <= tables
    engine.dispose()
