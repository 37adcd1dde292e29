"""Flask application factory for the civic complaint lifecycle service."""
import logging
import os
import uuid
from typing import Optional

import click
from flask import Flask, current_app, g, jsonify, request
from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException
from dotenv import load_dotenv
from utils.clock import init_clock
from utils.errors import ComplaintServiceError, Forbidden, http_error_payload
from utils.logger import init_logging
from utils.security import apply_security_headers, sanitize_input
from extensions import csrf, db, init_extensions, login_manager


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ComplaintServiceError)
    def service_error(error: ComplaintServiceError):
        db.session.rollback()
        if isinstance(error, Forbidden):
            from utils.decorators import record_denial  # Local import to avoid circular dependency

            record_denial(error)
        else:
            app.logger.info(
                "Complaint request rejected",
                extra={"code": error.code, "reason": error.message, "method": request.method},
            )
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def http_error(error: HTTPException):
        app.logger.warning(f"{error.code} {error.name}", extra={"method": request.method})
        return jsonify(http_error_payload(error.code or 500, error.description or error.name)), error.code

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        app.logger.exception("500 Internal Server Error")
        return jsonify(http_error_payload(500, "An unexpected error occurred.")), 500


def ensure_default_admin(app: Flask) -> None:
    """Seed an admin account, the escalation settings row and, on first boot, the zone topology."""
    from models import User, Zone  # Local import to avoid circular dependency
    from utils.escalation import current_settings
    from utils.zones import load_topology_file

    admin_email = (app.config.get("DEFAULT_ADMIN_EMAIL") or "").lower().strip()
    if admin_email:
        admin_user = User.query.filter_by(email=admin_email).first()
        if admin_user is None:
            db.session.add(
                User(
                    full_name=app.config.get("DEFAULT_ADMIN_NAME") or "System Administrator",
                    email=admin_email,
                    role="admin",
                    is_active=True,
                )
            )
        elif admin_user.role != "admin" or not admin_user.is_active:
            admin_user.role = "admin"
            admin_user.is_active = True

    current_settings()
    db.session.commit()

    topology_file = app.config.get("TOPOLOGY_FILE")
    if topology_file and os.path.exists(topology_file) and Zone.query.count() == 0:
        load_topology_file(topology_file)


def ensure_database_exists(database_uri: str) -> None:
    """Create the target database if it does not exist (PostgreSQL + SQLite support)."""
    url = make_url(database_uri)

    if url.drivername.startswith("sqlite"):
        # For SQLite just make sure the parent directory exists.
        if url.database and url.database != ":memory:":
            os.makedirs(os.path.dirname(url.database) or ".", exist_ok=True)
        return

    if url.drivername.startswith("postgres"):
        db_name = url.database
        admin_url = url.set(database=os.getenv("POSTGRES_DB_ADMIN", "postgres"))
        engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
        try:
            with engine.connect() as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": db_name}
                ).scalar()
                if not exists:
                    conn.execute(text(f'CREATE DATABASE "{db_name}"'))
        except OperationalError as exc:
            # Startup continues; the first real query fails loudly if the database is missing.
            logging.getLogger(__name__).warning("Could not verify database %s: %s", db_name, exc)
        finally:
            engine.dispose()


def register_identity(app: Flask) -> None:
    """Resolve the acting user from the header set by the authenticating gateway."""

    @login_manager.user_loader
    def load_user(user_id):
        from models import User  # Local import to avoid circular dependency

        if not user_id:
            return None
        return db.session.get(User, str(user_id))

    @login_manager.request_loader
    def load_user_from_request(req):
        from models import User  # Local import to avoid circular dependency

        user_id = (req.headers.get(current_app.config.get("AUTH_USER_HEADER", "X-User-Id")) or "").strip()
        if not user_id:
            return None
        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            current_app.logger.warning("Unknown or inactive user header", extra={"user_id": user_id})
            return None
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify(http_error_payload(401, "Authentication required.")), 401


def register_commands(app: Flask) -> None:
    @app.cli.command("escalation-scan")
    def escalation_scan():
        """Refresh escalation levels for open complaints (schedule this via cron)."""
        from utils.escalation import run_escalation_scan

        changed = run_escalation_scan(app)
        click.echo(f"Escalation levels changed: {changed}")

    @app.cli.command("load-topology")
    @click.argument("path", type=click.Path(exists=True, dir_okay=False))
    @click.option("--merge", is_flag=True, help="Keep zones and squads missing from the file.")
    def load_topology_command(path, merge):
        """Load squads and zones from a JSON topology file."""
        from utils.zones import load_topology_file

        summary = load_topology_file(path, replace=not merge)
        click.echo(f"Loaded {summary['squads']} squad(s) and {summary['zones']} zone(s)")


def create_app(config_name: Optional[str] = None, clock=None) -> Flask:
    """Application factory with environment-aware configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    # Resolve configuration
    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    config_key = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()
    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
    }
    config_class = config_map.get(config_key, ProductionConfig)
    app.config.from_object(config_class())

    # Optional instance-specific overrides
    if not app.config.get("TESTING"):
        app.config.from_pyfile("config.py", silent=True)
    ensure_database_exists(app.config["SQLALCHEMY_DATABASE_URI"])

    # Initialize logging early
    init_logging(app)

    init_extensions(app)
    init_clock(app, clock)
    register_identity(app)

    # Blueprints
    from routes import API_BLUEPRINTS

    for blueprint in API_BLUEPRINTS:
        # JSON API authenticated by header, not by browser session cookies.
        csrf.exempt(blueprint)
        app.register_blueprint(blueprint)

    register_commands(app)
    register_error_handlers(app)

    # Request lifecycle hooks
    @app.before_request
    def _before_request() -> None:
        g.request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
        g.sanitized_args = sanitize_input(request.args)

    @app.after_request
    def _after_request(response):
        response.headers.setdefault("X-Request-Id", getattr(g, "request_id", ""))
        return apply_security_headers(response, force_https=app.config.get("PREFERRED_URL_SCHEME") == "https")

    # Ensure tables exist so first run creates the database structure automatically.
    with app.app_context():
        import models  # noqa: F401  Register mappers before create_all

        db.create_all()
        ensure_default_admin(app)

    return app


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port, use_reloader=False)
