"""Alembic environment for the verification and queue schema.

Revisions are autogenerated from `Base.metadata`:
  alembic revision --autogenerate -m "describe change"
"""
from logging.config import fileConfig
import os
import sys

from sqlalchemy import create_engine, pool
from alembic import context

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.core.config import settings  # noqa: E402
from app.core.database import Base  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def get_url() -> str:
    url = settings.DATABASE_URL or config.get_main_option("sqlalchemy.url")
    if not url or url.strip() == "DATABASE_URL":
        raise RuntimeError("DATABASE_URL is not set; configure it in .env or the environment.")
    return url


def _configure_options(url: str) -> dict:
    # SQLite cannot ALTER constraints in place
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "compare_server_default": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline() -> None:
    url = get_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_options(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = get_url()
    connectable = create_engine(url, poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_options(url))
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
