"""
Account routes for Classroom Ranks.

Sign-in, registration and sign-out against the backend's auth service,
plus the holding pages shown while a profile cannot be loaded or a student
account is awaiting approval.
"""

from flask import Blueprint, redirect, render_template, url_for, flash, request, session, current_app

from app.auth import (
    clear_session, fetch_profile, get_current_profile, home_endpoint_for,
    is_signed_in, login_required, start_session,
)
from app.extensions import backend, limiter
from app.utils.backend_client import AuthError, BackendError
from app.utils.helpers import is_safe_url
from forms import LoginForm, RegisterForm

auth_bp = Blueprint('auth', __name__)


# -------------------- SIGN IN / SIGN UP --------------------

@auth_bp.route('/login', methods=['GET', 'POST'])
@limiter.limit("10 per minute", methods=["POST"])
def login():
    """Sign in with email and password."""
    form = LoginForm()
    if form.validate_on_submit():
        email = form.email.data.strip().lower()
        try:
            auth_session = backend.client.sign_in(email, form.password.data)
        except AuthError as exc:
            current_app.logger.info(f"Sign-in refused for {email}: {exc}")
            flash("Invalid email or password.", "error")
            return render_template('auth_login.html', form=form), 401
        except BackendError as exc:
            current_app.logger.error(f"Sign-in failed for {email}: {exc}")
            flash("The service is unavailable right now. Please try again.", "error")
            return render_template('auth_login.html', form=form), 503

        clear_session()
        start_session(auth_session)
        current_app.logger.info(f"User {auth_session.user_id} signed in")

        next_url = request.args.get("next")
        if next_url and is_safe_url(next_url):
            return redirect(next_url)
        return redirect(url_for('main.home'))

    if request.method == 'GET' and is_signed_in():
        return redirect(url_for('main.home'))
    return render_template('auth_login.html', form=form)


@auth_bp.route('/register', methods=['GET', 'POST'])
@limiter.limit("10 per minute", methods=["POST"])
def register():
    """Create a student account; a teacher must approve it before use."""
    form = RegisterForm()
    if form.validate_on_submit():
        email = form.email.data.strip().lower()
        try:
            backend.client.sign_up(email, form.password.data, form.full_name.data.strip())
        except AuthError as exc:
            flash(str(exc) or "Registration was refused.", "error")
            return render_template('auth_register.html', form=form), 400
        except BackendError as exc:
            current_app.logger.error(f"Sign-up failed for {email}: {exc}")
            flash("The service is unavailable right now. Please try again.", "error")
            return render_template('auth_register.html', form=form), 503

        current_app.logger.info(f"New account registered: {email}")
        flash(
            "Registration succeeded! Your account is waiting for teacher approval. "
            "Log in to follow its status.",
            "success",
        )
        return redirect(url_for('auth.login'))
    return render_template('auth_register.html', form=form)


@auth_bp.route('/logout')
def logout():
    """Sign out of the backend (best effort) and clear the session."""
    if is_signed_in():
        try:
            backend.client.restore_session(session['access_token'], session['refresh_token'])
            backend.client.sign_out()
        except BackendError as exc:
            current_app.logger.info(f"Backend sign-out skipped: {exc}")
    clear_session()
    flash("Logged out.", "info")
    return redirect(url_for('auth.login'))


# -------------------- HOLDING PAGES --------------------

@auth_bp.route('/pending')
@login_required
def pending():
    """Shown to student accounts that are pending or were rejected."""
    profile = get_current_profile()
    if profile is None:
        return redirect(url_for('auth.profile_unavailable'))
    if profile.is_teacher or profile.is_approved:
        return redirect(url_for(home_endpoint_for(profile)))
    return render_template('auth_pending.html', profile=profile)


@auth_bp.route('/pending/check', methods=['POST'])
@login_required
def check_status():
    """Reload the profile on demand and move on once approved."""
    profile = fetch_profile(backend.client, session['user_id'])
    if profile is None:
        return redirect(url_for('auth.profile_unavailable'))
    if profile.is_teacher or profile.is_approved:
        flash("Your account has been approved. Welcome!", "success")
        return redirect(url_for(home_endpoint_for(profile)))
    if profile.status == 'rejected':
        flash("Your account was rejected. Please contact your teacher.", "error")
    else:
        flash("Still waiting for approval.", "info")
    return redirect(url_for('auth.pending'))


@auth_bp.route('/profile-unavailable')
@login_required
def profile_unavailable():
    """The user is signed in but neither profile source answered."""
    profile = get_current_profile()
    if profile is not None:
        return redirect(url_for(home_endpoint_for(profile)))
    return render_template('auth_profile_unavailable.html'), 503
