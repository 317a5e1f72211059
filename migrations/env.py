import logging
from logging.config import fileConfig

from alembic import context
from flask import current_app
from sqlalchemy import create_engine, pool

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)
logger = logging.getLogger("alembic.env")


def _target_metadata():
    return current_app.extensions["migrate"].db.metadata


def _get_url():
    # URL efektif dari engine Flask (sudah lewat resolver config_db)
    return current_app.extensions["migrate"].db.engine.url.render_as_string(hide_password=False)


def _configure_opts(url):
    # SQLite tidak mendukung ALTER penuh; pakai batch mode
    return {
        "target_metadata": _target_metadata(),
        "compare_type": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_migrations_offline():
    url = _get_url()
    context.configure(
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_opts(url),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    url = _get_url()
    connectable = create_engine(url, poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(connection=connection, **_configure_opts(url))
        with context.begin_transaction():
            context.run_migrations()
    logger.info("Migrasi selesai untuk %s", connectable.url.render_as_string(hide_password=True))


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
