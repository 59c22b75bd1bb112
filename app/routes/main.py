"""
Main routes for Classroom Ranks.

Contains public-facing utility routes: the role-aware home redirect,
health checks, the about page, and the shared notifications page.
"""

from flask import Blueprint, redirect, render_template, url_for, jsonify, current_app, session, flash

from app import queries
from app.auth import get_current_profile, home_endpoint_for, login_required
from app.extensions import backend
from app.utils.backend_client import BackendError
from forms import ActionForm

# Create blueprint
main_bp = Blueprint('main', __name__)


# -------------------- HOME AND INFO PAGES --------------------

@main_bp.route('/')
@main_bp.route('/home')
@login_required
def home():
    """Send each user to the area matching their profile."""
    return redirect(url_for(home_endpoint_for(get_current_profile())))


@main_bp.route('/about')
def about():
    """About the app and its author."""
    return render_template('about.html')


@main_bp.route('/health')
def health_check():
    """Simple health check endpoint for uptime monitoring."""
    return 'ok', 200


@main_bp.route('/health/deep')
def health_check_deep():
    """Health check that also proves the backend answers."""
    try:
        backend.client.select('ranks', columns='id', limit=1)
        return 'ok', 200
    except BackendError:
        current_app.logger.exception('Deep health check failed')
        return jsonify(error='Backend error'), 500


# -------------------- NOTIFICATIONS --------------------

@main_bp.route('/notifications')
@login_required
def notifications():
    """Latest notifications for the signed-in user."""
    try:
        items = queries.list_notifications(backend.client, session['user_id'])
    except BackendError as exc:
        flash(f"Could not load notifications: {exc}", "error")
        items = []
    unread = sum(1 for n in items if not n.is_read)
    return render_template('notifications.html', notifications=items, unread=unread, form=ActionForm())


@main_bp.route('/notifications/<notification_id>/read', methods=['POST'])
@login_required
def mark_notification_read(notification_id):
    form = ActionForm()
    if form.validate_on_submit():
        try:
            queries.mark_notification_read(backend.client, notification_id, session['user_id'])
        except BackendError as exc:
            flash(str(exc), "error")
    return redirect(url_for('main.notifications'))


@main_bp.route('/notifications/read-all', methods=['POST'])
@login_required
def mark_all_notifications_read():
    form = ActionForm()
    if form.validate_on_submit():
        try:
            items = queries.list_notifications(backend.client, session['user_id'])
            marked = queries.mark_all_notifications_read(backend.client, items)
            if marked:
                flash(f"Marked {marked} notification(s) as read.", "success")
        except BackendError as exc:
            flash(str(exc), "error")
    return redirect(url_for('main.notifications'))
