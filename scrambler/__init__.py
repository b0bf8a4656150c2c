import os
from flask import Flask

_DEV_SECRET = "scrambler-dev-secret"


def create_app():
    app = Flask(__name__)

    db_url = os.environ.get("DATABASE_URL")
    if not db_url:
        raise RuntimeError("DATABASE_URL is required; runs and meet sheets are stored in PostgreSQL.")

    secret = os.environ.get("SECRET_KEY")
    if not secret:
        app.logger.warning("SECRET_KEY not set; using the development session key")
        secret = _DEV_SECRET
    app.config["SECRET_KEY"] = secret

    # Pool is optional; direct connections are used if it cannot be created
    try:
        from . import datastore_pg as _pg
        try:
            minconn = int(os.environ.get("DB_POOL_MIN", "1"))
        except ValueError:
            minconn = 1
        try:
            maxconn = int(os.environ.get("DB_POOL_MAX", "10"))
        except ValueError:
            maxconn = 10
        _pg.init_pool(minconn=minconn, maxconn=maxconn)
    except Exception:  # pragma: no cover
        app.logger.exception("PostgreSQL pool initialization failed; continuing without pool")

    if os.environ.get("CREATE_SCHEMA_ON_STARTUP", "0") == "1":
        from .datastore import create_tables
        app.logger.info("Creating database schema")
        try:
            create_tables()
        except Exception:  # pylint: disable=broad-except
            app.logger.exception("Error creating database schema")

    from . import routes
    app.register_blueprint(routes.bp)

    return app
