"""Shared Flask extension singletons to avoid circular imports."""
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_wtf import CSRFProtect
from flask_login import LoginManager

# Created unbound; init_extensions attaches them to the app built by create_app.
csrf = CSRFProtect()
db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()


def init_extensions(app) -> None:
    csrf.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    # Identity arrives per request from the gateway header; no cookie session is kept.
    login_manager.session_protection = None
