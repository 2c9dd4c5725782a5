import logging

from flask import Flask, request, g, jsonify
from flask_migrate import Migrate
from sqlalchemy.exc import OperationalError

from config import Config
from routes import health_bp, auth_bp, booking_bp, pay_pages_bp, staff_bp, webhook_bp

from models import db
from models.db import install_sqlite_transactions
from services.errors import BookingError
from services.scheduler import build_scheduler
from utils.seed import seed_roles
from utils.auth_context import load_current_user
from security.csrf import CSRF_EXEMPT_PATHS, require_csrf

logger = logging.getLogger(__name__)


def _configure_logging(app):
    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Reduce verbosity of third-party libraries
    logging.getLogger("stripe").setLevel(logging.WARNING)


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)
    _configure_logging(app)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(staff_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(pay_pages_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    with app.app_context():
        install_sqlite_transactions(db.engine)

        # Seed default roles at startup (safe & idempotent); tests seed after create_all
        if not app.config.get("TESTING"):
            try:
                seed_roles()
            except OperationalError:
                db.session.rollback()
                logger.warning("Roles not seeded, run `flask db upgrade` first")

    @app.before_request
    def _load_user():
        load_current_user()

    @app.before_request
    def _csrf_protect():
        # Only protect state-changing requests
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if request.path in CSRF_EXEMPT_PATHS:
                return None

            # Only enforce CSRF if user is already authenticated (cookie session)
            if getattr(g, "user", None) is not None:
                failure = require_csrf()
                if failure:
                    return failure

    @app.errorhandler(BookingError)
    def _booking_error(exc):
        if exc.http_status >= 500:
            logger.warning("%s %s failed: %s", request.method, request.path, exc.message)
        return jsonify(exc.to_dict()), exc.http_status

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        if request.blueprint != "pay_pages":
            resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    # started by the process owner, see __main__ and `flask run-scheduler`
    app.extensions["scheduler"] = build_scheduler(app)

    register_cli(app)

    return app

#-------------------------
import time

import click
from models.user import User, Role
from services.cancellations import retry_pending_refunds
from services.reaper import reclaim_expired_holds, send_booking_reminders

def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        admin_role = Role.query.filter_by(name="ADMIN").first()
        if not admin_role:
            admin_role = Role(name="ADMIN")
            db.session.add(admin_role)
            db.session.commit()

        if admin_role not in user.roles:
            user.roles.append(admin_role)
            db.session.commit()

        click.echo(f"{user.email} promoted to ADMIN")

    @app.cli.command("reap-expired")
    def reap_expired():
        """Delete unpaid holds past their expiry."""
        count = reclaim_expired_holds()
        click.echo(f"Reclaimed {count} expired hold(s)")

    @app.cli.command("send-reminders")
    def send_reminders():
        """Remind staff and providers about visits starting soon."""
        count = send_booking_reminders()
        click.echo(f"Sent {count} reminder(s)")

    @app.cli.command("retry-refunds")
    def retry_refunds():
        """Re-request refunds that never reached the gateway."""
        count = retry_pending_refunds()
        click.echo(f"Requested {count} refund(s)")

    @app.cli.command("run-scheduler")
    def run_scheduler():
        """Run the background sweeps in the foreground until interrupted."""
        scheduler = app.extensions["scheduler"]
        scheduler.start()
        try:
            while scheduler.running:
                time.sleep(1)
        except KeyboardInterrupt:
            click.echo("Stopping scheduler")
        finally:
            scheduler.stop()

#-------------------------




if __name__ == "__main__":
    app = create_app()
    scheduler = app.extensions["scheduler"]
    if app.config.get("SCHEDULER_ENABLED"):
        scheduler.start()
    try:
        # Run locally
        app.run(host="127.0.0.1", port=5002)
    finally:
        scheduler.stop()
