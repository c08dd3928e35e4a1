from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context

from loyalty import models  # noqa: F401  (registers the tables on Base.metadata)
from loyalty.config import load_settings
from loyalty.database import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def migration_url() -> str:
    """DATABASE_URI from the service settings on the sync driver, else the ini URL."""
    settings = load_settings()
    if settings.database_uri:
        return settings.sync_database_uri
    return config.get_main_option("sqlalchemy.url")


def run_migrations_offline():
    context.configure(
        url=migration_url(),
        target_metadata=target_metadata,
        compare_type=True,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    section = config.get_section(config.config_ini_section) or {}
    section["sqlalchemy.url"] = migration_url()
    engine = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
