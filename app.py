# backend/app.py
from __future__ import annotations

import logging
import os

import click
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from flask_cors import CORS
from sqlalchemy import event

from config import Config
from db import db, migrate
from realtime import socketio

# Ensure models are imported so Flask-Migrate sees them
from models.user import User
from models.ride_route import RideRoute
from models.ride_bill import RideBill
from models.backup_settings import BackupSettings

# Blueprints
from routes.auth import auth_bp
from routes.data_management import data_bp
from routes.users import users_bp
from routes.ride_routes import ride_routes_bp
from routes.ride_bills import ride_bills_bp
from routes.public import public_bp

# Background tasks / CLI
from tasks import maintenance


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__)

    # Respect reverse proxy headers (scheme / host) for correct URL generation
    app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)  # type: ignore[arg-type]

    CORS(app, resources={r"/*": {"origins": "*"}})

    # Load config + init extensions
    app.config.from_object(config_object)
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))
    db.init_app(app)
    migrate.init_app(app, db)
    socketio.init_app(app, cors_allowed_origins="*")

    with app.app_context():
        # Every DateTime column is naive UTC; keep MySQL's NOW() in step
        if db.engine.dialect.name == "mysql":
            @event.listens_for(db.engine, "connect")
            def _set_utc_timezone(dbapi_conn, _):
                cur = dbapi_conn.cursor()
                try:
                    cur.execute("SET time_zone = '+00:00'")
                finally:
                    cur.close()

        # Touch models so Alembic/Flask-Migrate registers them
        _ = (User, RideRoute, RideBill, BackupSettings)

    @app.route("/health")
    def health_check():
        return jsonify(status="ok", name=app.config["APP_NAME"]), 200

    @app.errorhandler(404)
    def handle_404(e):
        return jsonify(error="Not Found", path=request.path), 404

    # Global error handler
    @app.errorhandler(Exception)
    def handle_any_error(e: Exception):
        if isinstance(e, HTTPException):
            return jsonify(error=e.description), e.code
        app.logger.exception("[app] unhandled error on %s %s", request.method, request.path)
        return jsonify(error=str(e)), 500

    # Register blueprints
    app.register_blueprint(auth_bp)
    app.register_blueprint(data_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(ride_routes_bp)
    app.register_blueprint(ride_bills_bp)
    app.register_blueprint(public_bp)

    # CLI: hooks for cron / cloud schedulers
    @app.cli.command("backup-if-due")
    def backup_if_due_cmd():
        result = maintenance.backup_if_due()
        if result is None:
            print("Backup not due.")
        else:
            print(f"Backup written: {result['backup']['filename']}")

    @app.cli.command("backup-now")
    def backup_now_cmd():
        result = maintenance.backup_now()
        print(f"Backup written: {result['backup']['filename']}")

    @app.cli.command("sync-driver-qr")
    @click.option("--force", is_flag=True, help="Regenerate every driver's QR code.")
    def sync_driver_qr_cmd(force):
        result = maintenance.sync_driver_qr(force=force)
        print("QR sync: updated={updated} skipped={skipped} failed={failed} total={total}".format(**result))

    @app.cli.command("refresh-expiry")
    def refresh_expiry_cmd():
        result = maintenance.refresh_expiry()
        print(f"Expiry refresh: {result['expired']} expired, {result['renewed']} renewed.")

    return app


# Optional local entrypoint (useful for quick dev runs)
if __name__ == "__main__":
    app = create_app()
    # Socket.IO server (falls back to Werkzeug in dev)
    socketio.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "5000")),
        allow_unsafe_werkzeug=True,  # dev convenience
        debug=bool(os.environ.get("FLASK_DEBUG", "")),
    )
