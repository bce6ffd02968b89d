from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from chipledger.common.config import settings
from chipledger.common.db import Base

# Register every table on Base.metadata for autogenerate.
from chipledger.services.accounts import models as _accounts  # noqa: F401
from chipledger.services.credits import models as _credits  # noqa: F401
from chipledger.services.notifications import models as _notifications  # noqa: F401
from chipledger.services.registration import models as _registration  # noqa: F401
from chipledger.services.transfers import models as _transfers  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)
config.set_main_option("sqlalchemy.url", settings.postgres_dsn)
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
