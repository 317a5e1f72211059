from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_wtf import CSRFProtect


from .config_db import (
    load_env_once,
    resolve_database_uri,
    resolve_int,
    resolve_page_size_options,
    resolve_secret_key,
    resolve_str,
)

db = SQLAlchemy()
migrate = Migrate()
csrf = CSRFProtect()


def create_app(test_config=None):
    app = Flask(__name__)

    # Load .env dan resolve DSN/SECRET
    load_env_once()
    app.config["SQLALCHEMY_DATABASE_URI"] = resolve_database_uri()
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SECRET_KEY"] = resolve_secret_key()
    # CSRF token dibiarkan tidak kedaluwarsa agar sesi opname yang panjang tidak gagal
    app.config["WTF_CSRF_TIME_LIMIT"] = None

    app.config["OPNAME_CODE_PREFIX"] = resolve_str("OPNAME_CODE_PREFIX", "SO")
    app.config["OPNAME_PAGE_SIZE_OPTIONS"] = resolve_page_size_options()
    app.config["OPNAME_DEFAULT_PAGE_SIZE"] = resolve_int("OPNAME_DEFAULT_PAGE_SIZE", 10)
    app.config["OPNAME_CODE_MAX_ATTEMPTS"] = resolve_int("OPNAME_CODE_MAX_ATTEMPTS", 5)

    if test_config:
        app.config.update(test_config)

    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)

    from app.routes import bp
    from app.cli import opname_cli

    app.register_blueprint(bp)
    app.cli.add_command(opname_cli)

    @app.shell_context_processor
    def _ctx():
        # supaya model langsung tersedia di flask shell
        from app import models

        return {
            "db": db,
            "Branch": models.Branch,
            "User": models.User,
            "Produk": models.Produk,
            "StockOpnameSession": models.StockOpnameSession,
            "StockOpnameItem": models.StockOpnameItem,
            "StockMovement": models.StockMovement,
        }

    return app
