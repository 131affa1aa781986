from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from tutor_scheduler.core import config


DATABASE_URL = config.DATABASE_URL

# Sessions are opened from the threadpool as well as request threads.
connect_args = {'check_same_thread': False} if DATABASE_URL.startswith('sqlite') else {}

engine = create_engine(DATABASE_URL, echo=config.DATABASE_ECHO, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_policy_schema_checked = False


def ensure_policy_schema() -> None:
    global _policy_schema_checked

    if _policy_schema_checked:
        return

    with _schema_lock:
        if _policy_schema_checked:
            return

        inspector = inspect(engine)
        table_names = inspector.get_table_names()

        if 'availability_defaults' not in table_names or 'availability_exceptions' not in table_names:
            _policy_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('availability_exceptions')}
        migration_steps = [
            ('reason', 'ALTER TABLE availability_exceptions ADD COLUMN reason VARCHAR(255)'),
            ('type', "ALTER TABLE availability_exceptions ADD COLUMN type VARCHAR(32) DEFAULT 'unavailable'"),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS ix_availability_exceptions_date ON availability_exceptions(date)')
            )
            connection.execute(text('DROP INDEX IF EXISTS idx_availability_exceptions_date_start'))
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_availability_exceptions_date_start '
                    'ON availability_exceptions(date, start_time)'
                )
            )

        _policy_schema_checked = True
