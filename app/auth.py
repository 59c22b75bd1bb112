"""
Authentication and authorization utilities for Classroom Ranks.

Contains session management helpers, the profile bootstrap, authentication
decorators, and timeout logic. Credentials are verified by the backend's
auth service; the Flask session only carries the tokens it hands back.
"""

import urllib.parse
from datetime import datetime, timedelta, timezone
from functools import wraps

from flask import session, flash, redirect, url_for, request, current_app, g, jsonify

from app import queries
from app.extensions import backend
from app.utils.backend_client import AuthError, BackendError


# -------------------- SESSION CONFIGURATION --------------------

SESSION_KEYS = ('user_id', 'email', 'access_token', 'refresh_token', 'login_time', 'last_activity')


def start_session(auth_session):
    """Store a freshly signed-in backend session."""
    now = datetime.now(timezone.utc).isoformat()
    session['user_id'] = auth_session.user_id
    session['email'] = auth_session.email
    session['access_token'] = auth_session.access_token
    session['refresh_token'] = auth_session.refresh_token
    session['login_time'] = now
    session['last_activity'] = now


def clear_session():
    """Remove identity keys but preserve the CSRF token and timezone."""
    for key in SESSION_KEYS:
        session.pop(key, None)
    g.pop('auth_session', None)
    g.pop('current_profile', None)


def _timeout():
    return timedelta(minutes=current_app.config.get('SESSION_TIMEOUT_MINUTES', 60))


def session_expired():
    last_activity = session.get('last_activity')
    if not last_activity:
        return True
    try:
        last_activity = datetime.fromisoformat(last_activity)
    except ValueError:
        return True
    return (datetime.now(timezone.utc) - last_activity) > _timeout()


def touch_session():
    session['last_activity'] = datetime.now(timezone.utc).isoformat()


# -------------------- BACKEND SESSION & PROFILE --------------------

def restore_backend_session():
    """
    Attach the stored tokens to this request's backend client.

    Returns the restored AuthSession, or None when there is nothing to
    restore or the backend refused the tokens (the session is then cleared).
    Rotated tokens are written back into the Flask session.
    """
    if 'auth_session' in g:
        return g.auth_session

    access_token = session.get('access_token')
    refresh_token = session.get('refresh_token')
    if not access_token or not refresh_token:
        g.auth_session = None
        return None

    try:
        restored = backend.client.restore_session(access_token, refresh_token)
    except AuthError as exc:
        current_app.logger.info(f"Stored session rejected for user {session.get('user_id')}: {exc}")
        clear_session()
        g.auth_session = None
        return None

    if restored.access_token and restored.access_token != access_token:
        session['access_token'] = restored.access_token
        session['refresh_token'] = restored.refresh_token
        current_app.logger.debug(f"Session tokens rotated for user {restored.user_id}")

    g.auth_session = restored
    return restored


def fetch_profile(client, user_id):
    """
    Load a user's profile, falling back through two sources.

    1. A direct read of the user's own ``profiles`` row.
    2. The ``get_my_profile`` procedure, which the backend runs with elevated
       rights for accounts whose row-level policies hide their own row.

    Each attempt is bounded by the client's timeout. Returns None if both
    attempts fail or come back empty.
    """
    try:
        profile = queries.get_profile_row(client, user_id)
        if profile:
            current_app.logger.debug(f"Profile for {user_id} loaded by direct read")
            return profile
        current_app.logger.warning(f"Direct profile read for {user_id} returned no row")
    except BackendError as exc:
        current_app.logger.warning(f"Direct profile read for {user_id} failed: {exc}")

    try:
        profile = queries.my_profile(client)
        if profile:
            current_app.logger.info(f"Profile for {user_id} loaded by get_my_profile")
            return profile
        current_app.logger.warning(f"get_my_profile for {user_id} returned no data")
    except BackendError as exc:
        current_app.logger.warning(f"get_my_profile for {user_id} failed: {exc}")

    current_app.logger.error(f"All profile sources failed for {user_id}; continuing without a profile")
    return None


def get_current_profile():
    """Return the signed-in user's Profile (cached for the request) or None."""
    if 'current_profile' not in g:
        auth_session = restore_backend_session()
        if auth_session is None:
            g.current_profile = None
        else:
            g.current_profile = fetch_profile(backend.client, auth_session.user_id)
    return g.current_profile


def is_signed_in():
    return 'user_id' in session and 'access_token' in session


def home_endpoint_for(profile):
    """Which page a signed-in user lands on."""
    if profile is None:
        return 'auth.profile_unavailable'
    if profile.is_teacher:
        return 'teacher.dashboard'
    if profile.is_approved:
        return 'student.dashboard'
    return 'auth.pending'


# -------------------- AUTHENTICATION DECORATORS --------------------

def _redirect_to_login():
    encoded_next = urllib.parse.quote(request.path, safe="")
    return redirect(f"{url_for('auth.login')}?next={encoded_next}")


def login_required(f):
    """
    Decorator to require a signed-in backend user.

    Enforces the inactivity timeout and restores the backend session so that
    row-level security applies to every call the view makes.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not is_signed_in():
            return _redirect_to_login()

        if session_expired():
            clear_session()
            flash("Session expired. Please log in again.", "warning")
            return _redirect_to_login()

        if restore_backend_session() is None:
            flash("Your session is no longer valid. Please log in again.", "warning")
            return _redirect_to_login()

        touch_session()
        return f(*args, **kwargs)
    return decorated_function


def _profile_required(allowed, deny_message):
    def decorator(f):
        @wraps(f)
        @login_required
        def decorated_function(*args, **kwargs):
            profile = get_current_profile()
            if profile is None:
                return redirect(url_for('auth.profile_unavailable'))
            if not allowed(profile):
                current_app.logger.info(
                    f"Denied {request.path} to {profile.id} (role={profile.role}, status={profile.status})"
                )
                flash(deny_message, "warning")
                return redirect(url_for(home_endpoint_for(profile)))
            return f(*args, **kwargs)
        return decorated_function
    return decorator


teacher_required = _profile_required(
    lambda profile: profile.is_teacher,
    "That page is for teachers only.",
)

student_required = _profile_required(
    lambda profile: not profile.is_teacher and profile.is_approved,
    "That page is for approved students only.",
)


def api_login_required(f):
    """JSON flavour of login_required: 401 instead of a redirect."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not is_signed_in() or session_expired():
            return jsonify({"status": "error", "message": "Unauthorized"}), 401
        if restore_backend_session() is None:
            return jsonify({"status": "error", "message": "Unauthorized"}), 401
        touch_session()
        return f(*args, **kwargs)
    return decorated_function
