def test_get_engine_kwargs_sqlite_has_check_same_thread(monkeypatch):
    # Import lazily so monkeypatch can affect env usage deterministically.
    from recinventory.database import database as db

    kwargs = db.get_engine_kwargs("sqlite:///./records_inventory.db")
    assert "connect_args" in kwargs
    assert kwargs["connect_args"]["check_same_thread"] is False
    # SQLite should not require pool sizing knobs.
    assert "pool_size" not in kwargs
    assert "max_overflow" not in kwargs
    assert kwargs["pool_pre_ping"] is True


def test_get_engine_kwargs_postgres_has_conservative_pooling(monkeypatch):
    from recinventory.database import database as db

    monkeypatch.setenv("DB_POOL_SIZE", "5")
    monkeypatch.setenv("DB_MAX_OVERFLOW", "5")
    monkeypatch.setenv("DB_POOL_TIMEOUT_SEC", "30")

    kwargs = db.get_engine_kwargs("postgresql+psycopg://u:p@localhost:5432/db")
    assert "connect_args" not in kwargs
    assert kwargs["pool_pre_ping"] is True
    assert kwargs["pool_size"] == 5
    assert kwargs["max_overflow"] == 5
    assert kwargs["pool_timeout"] == 30


def test_debug_env_turns_on_sql_echo(monkeypatch):
    from recinventory.database import database as db

    monkeypatch.setenv("DEBUG", "true")
    assert db.get_engine_kwargs("sqlite:///x.db")["echo"] is True
    monkeypatch.setenv("DEBUG", "false")
    assert db.get_engine_kwargs("sqlite:///x.db")["echo"] is False


def test_sqlite_pragmas_listener_is_guarded():
    # Verify the helper used by the connect event guard behaves as expected.
    from recinventory.database import database as db

    assert db._is_sqlite_url("sqlite:///./records_inventory.db") is True
    assert db._is_sqlite_url("postgresql+psycopg://u:p@localhost/db") is False


def test_ensure_legacy_schema_copies_application_number_for_sqlite(tmp_path):
    """Legacy SQLite stores keyed on application_number gain schedule_number in place."""
    from sqlalchemy import create_engine, text
    from recinventory.database import database as db

    db_path = tmp_path / "legacy.db"
    url = f"sqlite:///{db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False})

    # Create a minimal legacy schema predating the schedule rename.
    with engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE IF NOT EXISTS series ("
                "_id INTEGER PRIMARY KEY AUTOINCREMENT,"
                "application_number VARCHAR,"
                "item_number VARCHAR,"
                "record_series_title VARCHAR"
                ")"
            )
        )
        conn.execute(
            text(
                "INSERT INTO series (application_number, item_number, record_series_title) "
                "VALUES ('25-012', '1', 'Board Meeting Minutes'), (NULL, NULL, 'Loose Series')"
            )
        )

    # Apply compatibility patch.
    db.ensure_legacy_schema_compat(engine_override=engine, database_url_override=url)

    raw = engine.raw_connection()
    try:
        assert db._sqlite_table_has_column(raw, "series", "schedule_number") is True
    finally:
        raw.close()

    with engine.connect() as conn:
        rows = conn.execute(text("SELECT schedule_number FROM series ORDER BY _id")).fetchall()
    assert [row[0] for row in rows] == ["25-012", None]
    engine.dispose()


def test_ensure_legacy_schema_is_noop_without_series_table(tmp_path):
    from sqlalchemy import create_engine
    from recinventory.database import database as db

    url = f"sqlite:///{tmp_path / 'empty.db'}"
    engine = create_engine(url)
    db.ensure_legacy_schema_compat(engine_override=engine, database_url_override=url)

    raw = engine.raw_connection()
    try:
        assert db._sqlite_table_has_column(raw, "series", "schedule_number") is False
    finally:
        raw.close()
    engine.dispose()


def test_init_db_creates_tables(tmp_path):
    from sqlalchemy import create_engine, inspect
    from recinventory.database import database as db

    engine = create_engine(f"sqlite:///{tmp_path / 'fresh.db'}")
    db.init_db(engine_override=engine)

    tables = set(inspect(engine).get_table_names())
    assert {"series", "series_tags", "audit_events"} <= tables
    engine.dispose()
