"""
Alembic environment for the Shiai schema.

The URL comes from Shiai settings, so the same DATABASE_URL drives the app
and its migrations. SQLite databases migrate in batch mode because SQLite
cannot ALTER most constraints in place.

    alembic upgrade head                      # apply to DATABASE_URL
    alembic upgrade head --sql > schema.sql   # emit SQL only
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import make_url

from shiai.config import settings
from shiai.db.models import Base
from shiai.db.session import create_db_engine

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

database_url = settings.database_url


def _configure_options() -> dict:
    return {
        "target_metadata": Base.metadata,
        "compare_type": True,
        "render_as_batch": make_url(database_url).get_backend_name() == "sqlite",
    }


def run_migrations_offline() -> None:
    context.configure(
        url=database_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_options(),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_db_engine(database_url)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, **_configure_options())
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
