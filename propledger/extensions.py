from contextlib import contextmanager

from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
cors = CORS()


@contextmanager
def unit_of_work():
    """One storage transaction per logical ledger operation.

    Commits when the block exits cleanly, rolls back everything on any
    exception and re-raises it.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
