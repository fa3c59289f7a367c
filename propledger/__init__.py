# propledger/__init__.py
import logging
import os

from flask import Flask, jsonify
from werkzeug.middleware.proxy_fix import ProxyFix

from .adapters import build_chain_mirror, build_funds_provider
from .config import validate_config
from .errors import register_error_handlers
from .extensions import cors, db, jwt, migrate
from .services import (
    BorrowEngine, DistributionCoordinator, LendingSettings, RentDistributionEngine, VaultService,
    build_run_guard,
)
from .utils.money import utcnow

CONFIGS = {
    "production": "propledger.config.Config",
    "development": "propledger.config.DevelopmentConfig",
    "testing": "propledger.config.TestingConfig",
}


def _get_allowed_origins(app):
    default = ["http://localhost:5173", "http://127.0.0.1:5173"]
    extra = app.config.get("CORS_ALLOWED_ORIGINS") or ""
    return sorted(set(default + [o.strip() for o in extra.split(",") if o.strip()]))


def _configure_logging(app):
    """JSON logs to stdout."""
    level = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    app.logger.setLevel(level)
    root = logging.getLogger()
    root.setLevel(level)

    # avoid duplicate handlers in reloaders
    if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            fmt='{"ts":"%(asctime)s","level":"%(levelname)s","msg":"%(message)s","name":"%(name)s"}',
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        ))
        root.addHandler(handler)


def _configure_proxy(app):
    """Respect X-Forwarded-* from the load balancer."""
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    cors.init_app(
        app,
        resources={r"/api/*": {"origins": _get_allowed_origins(app)}},
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
        max_age=86400,
    )


def _init_ledger(app, clock):
    """Build the engines once; handlers and CLI commands share them."""
    mirror = build_chain_mirror(app.config)
    funds = build_funds_provider(app.config)
    rent = RentDistributionEngine.from_config(app.config, clock=clock)
    app.extensions["propledger"] = {
        "mirror": mirror,
        "funds": funds,
        "borrow": BorrowEngine(mirror, funds, settings=LendingSettings.from_config(app.config), clock=clock),
        "rent": rent,
        "coordinator": DistributionCoordinator(rent, guard=build_run_guard(app.config), clock=clock),
        "vault": VaultService(funds),
    }
    app.logger.info(
        "Ledger ready (mirror=%s, funds=%s)", type(mirror).__name__, type(funds).__name__,
    )


def create_app(config_object=None, clock=utcnow):
    """
    Application factory.

    `config_object` may be a config class, a dotted path to one, or a short
    name ("production", "development", "testing"). Defaults to the
    APP_ENV environment variable, then "production".
    """
    app = Flask(__name__)

    if config_object is None:
        config_object = os.getenv("APP_ENV", "production")
    if isinstance(config_object, str):
        config_object = CONFIGS.get(config_object, config_object)
    app.config.from_object(config_object)
    validate_config(app.config)

    _configure_logging(app)
    _configure_proxy(app)
    _init_extensions(app)

    # models must be imported so the metadata exists for migrations
    from . import models  # noqa: F401
    from .cli import register_cli
    from .routes import blueprints

    _init_ledger(app, clock)
    for bp in blueprints:
        app.register_blueprint(bp)
    register_error_handlers(app)
    register_cli(app)

    @app.get(app.config["API_PREFIX"] + "/health")
    def health():
        return jsonify({
            "status": "ok",
            "time": utcnow().isoformat() + "Z",
            "service": "propledger",
            "distribution_running": app.extensions["propledger"]["coordinator"].is_running,
        }), 200

    return app
