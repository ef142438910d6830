import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_scheduler.core import config


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic_scheduler.db")


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        # Sessions are handed to threadpool workers by the routers.
        return {"check_same_thread": False, "timeout": 30}
    return {}


engine = create_engine(DATABASE_URL, echo=config.SQL_ECHO, connect_args=_connect_args(DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

NON_TERMINAL_SQL = "('pending', 'confirmed')"

_schema_lock = Lock()
_booking_guards_checked = False


_SQLITE_GUARDS = [
    f"""
    CREATE TRIGGER IF NOT EXISTS trg_appointments_no_overlap
    BEFORE INSERT ON appointments
    WHEN NEW.status IN {NON_TERMINAL_SQL} AND EXISTS (
        SELECT 1 FROM appointments
        WHERE practitioner_id = NEW.practitioner_id
          AND status IN {NON_TERMINAL_SQL}
          AND scheduled_at < NEW.ends_at
          AND ends_at > NEW.scheduled_at
    )
    BEGIN
        SELECT RAISE(ABORT, 'appointments overlap for practitioner');
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS trg_appointments_no_overlap_reopen
    BEFORE UPDATE OF status ON appointments
    WHEN NEW.status IN {NON_TERMINAL_SQL} AND OLD.status NOT IN {NON_TERMINAL_SQL} AND EXISTS (
        SELECT 1 FROM appointments
        WHERE practitioner_id = NEW.practitioner_id
          AND id != NEW.id
          AND status IN {NON_TERMINAL_SQL}
          AND scheduled_at < NEW.ends_at
          AND ends_at > NEW.scheduled_at
    )
    BEGIN
        SELECT RAISE(ABORT, 'appointments overlap for practitioner');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_resource_reservations_no_overlap
    BEFORE INSERT ON resource_reservations
    WHEN EXISTS (
        SELECT 1 FROM resource_reservations
        WHERE resource_id = NEW.resource_id
          AND booking_date = NEW.booking_date
          AND start_time < NEW.end_time
          AND end_time > NEW.start_time
    )
    BEGIN
        SELECT RAISE(ABORT, 'resource reservations overlap');
    END
    """,
]

_POSTGRES_CONSTRAINTS = [
    (
        "appointments",
        "ex_appointments_practitioner_overlap",
        "ALTER TABLE appointments ADD CONSTRAINT ex_appointments_practitioner_overlap "
        "EXCLUDE USING gist (practitioner_id WITH =, tsrange(scheduled_at, ends_at, '[)') WITH &&) "
        f"WHERE (status IN {NON_TERMINAL_SQL})",
    ),
    (
        "resource_reservations",
        "ex_resource_reservations_overlap",
        "ALTER TABLE resource_reservations ADD CONSTRAINT ex_resource_reservations_overlap "
        "EXCLUDE USING gist (resource_id WITH =, tsrange(start_time, end_time, '[)') WITH &&)",
    ),
]


def install_booking_guards(connection: Connection) -> None:
    """Install the store-level overlap referees for appointments and reservations.

    The partial unique indexes declared on the models only catch identical
    start times; these guards reject any overlapping interval.
    """
    dialect = connection.dialect.name

    if dialect == "sqlite":
        for statement in _SQLITE_GUARDS:
            connection.execute(text(statement))
    elif dialect == "postgresql":
        connection.execute(text("CREATE EXTENSION IF NOT EXISTS btree_gist"))
        for table_name, constraint_name, statement in _POSTGRES_CONSTRAINTS:
            exists = connection.execute(
                text(
                    "SELECT 1 FROM pg_constraint c JOIN pg_class t ON t.oid = c.conrelid "
                    "WHERE c.conname = :name AND t.relname = :table"
                ),
                {"name": constraint_name, "table": table_name},
            ).first()
            if not exists:
                connection.execute(text(statement))


def ensure_booking_schema(bind: Engine | None = None) -> None:
    global _booking_guards_checked

    target = bind or engine
    use_flag = target is engine

    if use_flag and _booking_guards_checked:
        return

    with _schema_lock:
        if use_flag and _booking_guards_checked:
            return

        inspector = inspect(target)
        table_names = set(inspector.get_table_names())

        if not {"appointments", "resource_reservations"} <= table_names:
            return

        with target.begin() as connection:
            install_booking_guards(connection)

        if use_flag:
            _booking_guards_checked = True
