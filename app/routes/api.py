"""
API routes for Classroom Ranks.

Small JSON endpoints polled by the pages in place of a realtime change
feed (approval status, notification badge), plus the timezone setter.
"""

import pytz

from flask import Blueprint, request, jsonify, session, current_app, url_for

from app import queries
from app.auth import api_login_required, fetch_profile, home_endpoint_for
from app.extensions import backend
from app.utils.backend_client import BackendError

# Create blueprint
api_bp = Blueprint('api', __name__, url_prefix='/api')


# -------------------- STATUS API --------------------

@api_bp.route('/profile-status', methods=['GET'])
@api_login_required
def profile_status():
    """
    Re-read the caller's profile.

    The pending page polls this and follows ``redirect`` once the status
    changes away from ``pending``.
    """
    profile = fetch_profile(backend.client, session['user_id'])
    if profile is None:
        return jsonify({"status": "unavailable", "role": None,
                        "redirect": url_for('auth.profile_unavailable')}), 503
    return jsonify({
        "status": profile.status,
        "role": profile.role,
        "redirect": url_for(home_endpoint_for(profile)),
    })


@api_bp.route('/notifications', methods=['GET'])
@api_login_required
def notifications():
    """Latest notifications and the unread count for the navbar bell."""
    try:
        items = queries.list_notifications(backend.client, session['user_id'])
    except BackendError as exc:
        current_app.logger.warning(f"Notification poll failed for {session.get('user_id')}: {exc}")
        return jsonify({"status": "error", "message": "Backend error"}), 502
    return jsonify({
        "status": "ok",
        "unread": sum(1 for n in items if not n.is_read),
        "notifications": [n.to_dict() for n in items],
    })


# -------------------- UTILITY API --------------------

@api_bp.route('/set-timezone', methods=['POST'])
@api_login_required
def set_timezone():
    """Store user's timezone in session for datetime formatting"""
    data = request.get_json(silent=True) or {}
    timezone_name = data.get('timezone')

    if not timezone_name:
        return jsonify({"status": "error", "message": "Timezone is required."}), 400

    if timezone_name not in pytz.all_timezones:
        return jsonify({"status": "error", "message": "Invalid timezone."}), 400

    session['timezone'] = timezone_name
    current_app.logger.info(f"Timezone set to {timezone_name} for session")

    return jsonify({"status": "success", "message": f"Timezone set to {timezone_name}."})
