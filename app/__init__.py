"""
Application factory for Classroom Ranks.

This module provides create_app() which initializes Flask, extensions,
logging, Jinja filters, error handlers, and registers blueprints.
"""

import os
import logging
from logging.handlers import RotatingFileHandler

from flask import Flask, request, render_template, session, g, url_for, jsonify
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


# Validate required environment variables
required_env_vars = ["SECRET_KEY", "SUPABASE_URL", "SUPABASE_ANON_KEY", "FLASK_ENV"]
missing_vars = [var for var in required_env_vars if not os.getenv(var)]
if missing_vars:
    raise RuntimeError(
        "Missing required environment variables: " + ", ".join(missing_vars)
    )


# -------------------- UTILITIES --------------------
from app.utils.backend_client import BackendError, BackendTimeout
from app.utils.helpers import (
    avatar_url, format_date, format_datetime, format_points, gender_label,
    render_markdown,
)


def _env_flag(name):
    return os.getenv(name, "").lower() in {"1", "true", "yes", "on"}


# -------------------- APPLICATION FACTORY --------------------

def create_app():
    """
    Application factory function.

    Creates and configures the Flask application, initializes extensions,
    sets up logging, registers Jinja filters, and registers blueprints.

    Returns:
        Flask: Configured Flask application instance
    """
    # templates/ and static/ live at the project root, not in app/
    basedir = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))

    app = Flask(__name__,
                template_folder=os.path.join(basedir, 'templates'),
                static_folder=os.path.join(basedir, 'static'))

    # -------------------- CONFIGURATION --------------------
    app.config.from_mapping(
        DEBUG=False,
        ENV=os.environ["FLASK_ENV"],
        SECRET_KEY=os.environ["SECRET_KEY"],
        SUPABASE_URL=os.environ["SUPABASE_URL"],
        SUPABASE_ANON_KEY=os.environ["SUPABASE_ANON_KEY"],
        BACKEND_TIMEOUT_SECONDS=float(os.getenv("BACKEND_TIMEOUT_SECONDS", "5")),
        SESSION_TIMEOUT_MINUTES=int(os.getenv("SESSION_TIMEOUT_MINUTES", "60")),
        DISPLAY_TIMEZONE=os.getenv("DISPLAY_TIMEZONE", "Asia/Ho_Chi_Minh"),
        SESSION_COOKIE_SECURE=True,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        MAX_CONTENT_LENGTH=2 * 1024 * 1024,
        TEMPLATES_AUTO_RELOAD=True,
    )

    # -------------------- EXTENSIONS --------------------
    from app.extensions import csrf, limiter, backend

    csrf.init_app(app)
    limiter.init_app(app)
    backend.init_app(app)

    # -------------------- LOGGING --------------------
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    log_format = os.getenv(
        "LOG_FORMAT",
        "[%(asctime)s] %(levelname)s in %(module)s: %(message)s",
    )

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(logging.Formatter(log_format))

    app.logger.setLevel(log_level)
    # Prevent duplicate log entries by clearing handlers first
    app.logger.handlers.clear()
    app.logger.addHandler(stream_handler)

    if os.getenv("FLASK_ENV", app.config.get("ENV")) == "production":
        log_file = os.getenv("LOG_FILE", "app.log")
        file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=5)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(log_format))
        app.logger.addHandler(file_handler)

    # -------------------- JINJA2 FILTERS AND GLOBALS --------------------
    app.jinja_env.filters['format_datetime'] = format_datetime
    app.jinja_env.filters['format_date'] = format_date
    app.jinja_env.filters['format_points'] = format_points
    app.jinja_env.filters['gender_label'] = gender_label
    app.jinja_env.filters['avatar_url'] = avatar_url
    app.jinja_env.filters['markdown'] = render_markdown

    app.jinja_env.globals['min'] = min
    app.jinja_env.globals['max'] = max

    # -------------------- MAINTENANCE MODE --------------------
    def maintenance_context():
        """Context for the maintenance page, sourced from environment variables."""
        return {
            "message": os.getenv(
                "MAINTENANCE_MESSAGE",
                "We're performing scheduled maintenance. Please check back soon.",
            ),
            "expected_back": os.getenv("MAINTENANCE_EXPECTED_END", ""),
            "contact_email": os.getenv("MAINTENANCE_CONTACT", ""),
        }

    @app.before_request
    def show_maintenance_page():
        """Display a friendly maintenance page when maintenance mode is on."""
        if not _env_flag("MAINTENANCE_MODE"):
            return None

        # Always allow health checks and static assets.
        if request.endpoint in {"main.health_check", "main.health_check_deep"}:
            return None
        if request.path.startswith("/static/"):
            return None

        # MAINTENANCE_BYPASS_TOKEN=<string> lets ?maintenance_bypass=<token>
        # through; the bypass then sticks for the rest of the session.
        if session.get("maintenance_global_bypass") is True:
            g.maintenance_bypass_active = True
            return None

        bypass_token = os.getenv("MAINTENANCE_BYPASS_TOKEN", "")
        provided_token = request.args.get("maintenance_bypass")
        if bypass_token and provided_token and provided_token == bypass_token:
            app.logger.debug("Maintenance bypass granted (token).")
            session["maintenance_global_bypass"] = True
            g.maintenance_bypass_active = True
            return None

        return render_template("maintenance.html", **maintenance_context()), 503

    # -------------------- CONTEXT PROCESSORS --------------------
    @app.context_processor
    def inject_current_profile():
        """Expose the signed-in profile and unread badge count to templates."""
        from app.auth import get_current_profile, is_signed_in
        from app import queries

        if request.endpoint in {None, "static"} or not is_signed_in():
            return {'current_profile': None, 'unread_notifications': 0}
        if _env_flag("MAINTENANCE_MODE") and not getattr(g, 'maintenance_bypass_active', False):
            return {'current_profile': None, 'unread_notifications': 0}

        try:
            profile = get_current_profile()
            unread = 0
            if profile is not None:
                notifications = queries.list_notifications(backend.client, session['user_id'])
                unread = sum(1 for n in notifications if not n.is_read)
        except BackendError as e:
            app.logger.warning(f"Could not load navbar context: {e}")
            return {'current_profile': getattr(g, 'current_profile', None), 'unread_notifications': 0}
        return {'current_profile': profile, 'unread_notifications': unread}

    # -------------------- ERROR HANDLERS --------------------
    @app.errorhandler(BackendError)
    def backend_error(error):
        """A backend call failed while loading a page."""
        if isinstance(error, BackendTimeout):
            app.logger.error(f"Backend timeout on {request.path}: {error}")
        else:
            app.logger.error(f"Backend error on {request.path}: {error}")
        if request.path.startswith('/api/'):
            return jsonify({"status": "error", "message": "Backend error"}), 502
        return render_template(
            'error.html',
            code=502,
            title="Service unavailable",
            message="The data service did not answer. Please try again in a moment.",
        ), 502

    @app.errorhandler(404)
    def not_found_error(error):
        app.logger.warning(f"404 Not Found: {request.url}")
        return render_template(
            'error.html',
            code=404,
            title="Page not found",
            message="The page you requested does not exist.",
        ), 404

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.exception("500 Internal Server Error occurred")
        return render_template(
            'error.html',
            code=500,
            title="Something went wrong",
            message="An unexpected error occurred.",
        ), 500

    # -------------------- REGISTER BLUEPRINTS --------------------
    from app.routes.main import main_bp
    from app.routes.auth import auth_bp
    from app.routes.api import api_bp
    from app.routes.teacher import teacher_bp
    from app.routes.student import student_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(api_bp)
    app.register_blueprint(teacher_bp)
    app.register_blueprint(student_bp)

    # -------------------- SECURITY HEADERS --------------------
    @app.after_request
    def set_security_headers(response):
        """
        Add security headers to all HTTP responses.

        - HSTS: Force HTTPS connections
        - X-Frame-Options: Prevent clickjacking
        - X-Content-Type-Options: Prevent MIME sniffing attacks
        - CSP: Mitigate XSS attacks
        - Referrer-Policy: Control referrer information leakage

        See: https://owasp.org/www-project-secure-headers/
        """
        if request.path.startswith('/static/'):
            return response

        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        response.headers['X-Frame-Options'] = 'SAMEORIGIN'
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'

        # Bootstrap comes from jsdelivr; avatars from ui-avatars.com
        csp_directives = [
            "default-src 'self'",
            "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net",
            "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net",
            "font-src 'self' https://cdn.jsdelivr.net",
            "img-src 'self' data: https:",
            "connect-src 'self'",
            "base-uri 'self'",
            "form-action 'self'",
        ]
        response.headers['Content-Security-Policy'] = "; ".join(csp_directives)

        permissions = [
            "geolocation=()",
            "microphone=()",
            "camera=()",
            "payment=()",
            "usb=()",
        ]
        response.headers['Permissions-Policy'] = ", ".join(permissions)

        return response

    # -------------------- CLI COMMANDS --------------------
    from app import cli_commands
    cli_commands.init_app(app)

    return app


# Create a default application instance for compatibility with legacy imports
app = create_app()

from app.extensions import backend  # noqa: E402

__all__ = [
    "app",
    "create_app",
    "backend",
]
