from contextlib import contextmanager
from threading import Lock

from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from booking_core.core import config


def configure_sqlite_locking(bind: Engine) -> None:
    """Open every SQLite transaction with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, so two sessions can both read
    a capacity count before either one writes. Taking the write lock up front
    gives SQLite the same read-then-write serialization that row locks give
    PostgreSQL.
    """

    @event.listens_for(bind, 'connect')
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(bind, 'begin')
    def _begin_immediate(connection):
        connection.exec_driver_sql('BEGIN IMMEDIATE')


def _build_engine(url: str) -> Engine:
    if url.startswith('sqlite'):
        sqlite_engine = create_engine(
            url,
            echo=config.DATABASE_ECHO,
            connect_args={'check_same_thread': False},
        )
        configure_sqlite_locking(sqlite_engine)
        return sqlite_engine

    return create_engine(url, echo=config.DATABASE_ECHO, pool_pre_ping=True)


engine = _build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_reservation_schema_checked = False
_appointment_schema_checked = False
_service_schema_checked = False


def ensure_reservation_schema(bind: Engine | None = None) -> None:
    global _reservation_schema_checked

    if _reservation_schema_checked:
        return

    bind = bind or engine

    with _schema_lock:
        if _reservation_schema_checked:
            return

        inspector = inspect(bind)

        if 'reservations' not in inspector.get_table_names():
            _reservation_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('reservations')}
        migration_steps = [
            ('created_at', 'ALTER TABLE reservations ADD COLUMN created_at TIMESTAMP'),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS idx_reservations_idempotency_key '
                    'ON reservations(idempotency_key)'
                )
            )
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_reservations_service_window '
                    'ON reservations(business_id, service_id, slot_start, slot_end)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_reservations_expires_at ON reservations(expires_at)')
            )

        _reservation_schema_checked = True


def ensure_appointment_schema(bind: Engine | None = None) -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    bind = bind or engine

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(bind)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('booking_id', 'ALTER TABLE appointments ADD COLUMN booking_id VARCHAR'),
            ('guest_name', 'ALTER TABLE appointments ADD COLUMN guest_name VARCHAR'),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes VARCHAR'),
            ('cancellation_token', 'ALTER TABLE appointments ADD COLUMN cancellation_token VARCHAR'),
            ('version', 'ALTER TABLE appointments ADD COLUMN version INTEGER DEFAULT 1 NOT NULL'),
            ('cancelled_at', 'ALTER TABLE appointments ADD COLUMN cancelled_at TIMESTAMP'),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_appointments_service_window '
                    'ON appointments(business_id, service_id, start_time, end_time)'
                )
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS idx_appointments_cancellation_token '
                    'ON appointments(cancellation_token)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_status_start ON appointments(status, start_time)')
            )

        _appointment_schema_checked = True


def ensure_service_schema(bind: Engine | None = None) -> None:
    global _service_schema_checked

    if _service_schema_checked:
        return

    bind = bind or engine

    with _schema_lock:
        if _service_schema_checked:
            return

        inspector = inspect(bind)

        if 'services' not in inspector.get_table_names():
            _service_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('services')}
        migration_steps = [
            (
                'buffer_before_minutes',
                'ALTER TABLE services ADD COLUMN buffer_before_minutes INTEGER DEFAULT 0 NOT NULL',
            ),
            (
                'buffer_after_minutes',
                'ALTER TABLE services ADD COLUMN buffer_after_minutes INTEGER DEFAULT 0 NOT NULL',
            ),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))

        _service_schema_checked = True


@contextmanager
def transaction(db: Session):
    """Run one unit of work: commit on success, roll back on any error."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
