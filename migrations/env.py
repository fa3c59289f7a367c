import logging
from logging.config import fileConfig

from alembic import context
from flask import current_app

config = context.config
fileConfig(config.config_file_name)
logger = logging.getLogger('alembic.env')

db = current_app.extensions['migrate'].db
target_metadata = db.metadata


def _is_sqlite(url):
    return str(url).startswith('sqlite')


def run_migrations_offline():
    url = current_app.config.get('SQLALCHEMY_DATABASE_URI')
    context.configure(url=url,
                      target_metadata=target_metadata,
                      literal_binds=True,
                      compare_type=True,
                      render_as_batch=_is_sqlite(url))
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online():
    connectable = db.engine
    with connectable.connect() as connection:
        context.configure(connection=connection,
                          target_metadata=target_metadata,
                          compare_type=True,
                          render_as_batch=_is_sqlite(connectable.url))
        with context.begin_transaction():
            context.run_migrations()
    logger.info('Ledger schema migrations applied')


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
