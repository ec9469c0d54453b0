"""Alembic environment for the imscrc schema.

The connection URL always comes from ``imscrc.core.config.Settings``
(``DATABASE_URL`` or ``backend/.env``); alembic.ini only puts ``backend`` on
the import path.
"""
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

import imscrc.models  # noqa: F401
from imscrc.core.config import get_settings
from imscrc.db.base import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# configparser interpolates "%", so escape it in passwords.
config.set_main_option("sqlalchemy.url", get_settings().database_url.replace("%", "%%"))
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
