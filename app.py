import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_migrate import Migrate
from werkzeug.middleware.proxy_fix import ProxyFix

from config import Config
from models import db
from routes import health_bp, votes_bp, admin_bp
from security.ban_store import SqlBanStore, BanStoreUnavailable
from security.bruteforce import LoginGuard
from security.password import hash_password
from security.password_policy import require_admin_password
from security.rate_limit import VoteGuard
from utils.scheduler import GuardSweeper

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = os.path.join(os.path.abspath(os.path.dirname(__file__)), "migrations")


def _ensure_sqlite_dir(uri: str):
    prefix = "sqlite:///"
    if not uri.startswith(prefix) or uri.endswith(":memory:"):
        return
    directory = os.path.dirname(uri[len(prefix):])
    if directory:
        os.makedirs(directory, exist_ok=True)


def _cors_origins(value):
    if not value or not value.strip():
        return None
    return [origin.strip() for origin in value.split(",") if origin.strip()]


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Only trust X-Forwarded-For hops appended by our own proxies
    proxies = app.config.get("TRUSTED_PROXY_COUNT", 0)
    if proxies > 0:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=proxies)

    # Fail fast on a missing or weak admin password; keep only its hash
    admin_password = require_admin_password(app.config)
    app.extensions["admin_password_hash"] = hash_password(
        admin_password, rounds=app.config.get("BCRYPT_ROUNDS", 12)
    )

    origins = _cors_origins(app.config.get("CORS_ORIGINS"))
    if origins:
        CORS(app, origins=origins, methods=["GET", "POST", "DELETE"], supports_credentials=True)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(votes_bp)
    app.register_blueprint(admin_bp)

    # Database init
    _ensure_sqlite_dir(app.config["SQLALCHEMY_DATABASE_URI"])
    db.init_app(app)

    # Migrations
    Migrate(app, db, directory=MIGRATIONS_DIR)

    # Off by default so "flask db upgrade" owns the schema
    if app.config.get("AUTO_CREATE_TABLES"):
        with app.app_context():
            db.create_all()

    # Abuse guards are owned by the app, one instance per process
    ban_store = SqlBanStore()
    app.extensions["ban_store"] = ban_store
    app.extensions["vote_guard"] = VoteGuard.from_config(app.config, ban_store)
    app.extensions["login_guard"] = LoginGuard.from_config(app.config)

    sweeper = GuardSweeper(app, app.config.get("GUARD_SWEEP_INTERVAL_SECONDS", 300))
    app.extensions["guard_sweeper"] = sweeper
    # In Flask debug mode, avoid starting the sweeper in the reloader parent process.
    if app.config.get("GUARD_SWEEPER_ENABLED") and os.getenv("WERKZEUG_RUN_MAIN") in (None, "true"):
        sweeper.start()

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------

def register_cli(app):
    @app.cli.command("sweep-guards")
    def sweep_guards():
        """Run one cleanup pass over guard records and expired bans."""
        result = app.extensions["guard_sweeper"].run_once()
        print(
            f"Removed {result['login_records']} login records, "
            f"{result['vote_records']} vote records, {result['bans']} expired bans"
        )

    @app.cli.command("list-bans")
    def list_bans():
        """Print every ban entry."""
        try:
            bans = app.extensions["ban_store"].list()
        except BanStoreUnavailable:
            raise click.ClickException("Ban store unavailable")
        if not bans:
            print("No bans")
            return
        for ban in bans:
            print(f"{ban.ip}\t{ban.banned_until.isoformat()}")

    @app.cli.command("revoke-ban")
    @click.argument("ip")
    def revoke_ban(ip):
        """Lift the voting ban of an IP."""
        store = app.extensions["ban_store"]
        try:
            if store.get(ip) is None:
                print("Ban not found")
                return
            store.delete(ip)
        except BanStoreUnavailable:
            raise click.ClickException("Ban store unavailable")
        print(f"Ban for {ip} revoked")

#-------------------------


if __name__ == "__main__":
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app()
    logger.info("Traitor votes API running on http://localhost:%s", app.config["PORT"])
    app.run(host="0.0.0.0", port=app.config["PORT"])
