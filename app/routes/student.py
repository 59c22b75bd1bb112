"""
Student routes for Classroom Ranks.

Approved students see their own record: rank, progress toward the next
rank, recent point entries, and the reward shop.
"""

from flask import Blueprint, redirect, render_template, url_for, flash, session, current_app

from app import queries
from app.auth import student_required
from app.extensions import backend
from app.utils.backend_client import BackendError
from app.utils.helpers import format_points
from app.utils.ranks import get_next_rank, get_rank_info, get_rank_progress
from forms import StudentExchangeForm

# Create blueprint
student_bp = Blueprint('student', __name__, url_prefix='/student')


def get_linked_student():
    """The student record linked to the signed-in account, or None."""
    return queries.get_student_for_user(backend.client, session['user_id'])


# -------------------- DASHBOARD --------------------

@student_bp.route('/')
@student_required
def dashboard():
    client = backend.client
    student = get_linked_student()
    if student is None:
        return render_template('student_not_linked.html', current_page='dashboard')

    ranks = queries.list_ranks(client)
    return render_template(
        'student_dashboard.html',
        current_page='dashboard',
        student=student,
        rank_info=get_rank_info(student.current_rank, ranks),
        next_rank=get_next_rank(student.total_points, ranks),
        progress=get_rank_progress(student.total_points, ranks),
        history=queries.student_point_history(client, student.id),
    )


# -------------------- REWARDS --------------------

@student_bp.route('/rewards', methods=['GET', 'POST'])
@student_required
def rewards():
    """Reward shop; exchanging spends the student's own points."""
    client = backend.client
    student = get_linked_student()
    if student is None:
        return render_template('student_not_linked.html', current_page='rewards')

    form = StudentExchangeForm()
    if form.validate_on_submit():
        reward = queries.get_reward(client, form.reward_id.data)
        if reward is None or not reward.is_active:
            flash("That reward is no longer available.", "warning")
        elif reward.is_sold_out:
            flash("That reward is sold out.", "warning")
        elif student.total_points < reward.required_points:
            flash("You don't have enough points for this reward.", "warning")
        else:
            try:
                result = queries.exchange_reward(client, student.id, reward.id)
                current_app.logger.info(f"Student {student.id} exchanged reward {reward.id}")
                flash(f"Exchanged! {format_points(result.get('points_spent'))} points deducted.", "success")
            except BackendError as exc:
                flash(str(exc), "error")
        return redirect(url_for('student.rewards'))

    return render_template(
        'student_rewards.html',
        current_page='rewards',
        student=student,
        rewards=queries.list_rewards(client),
        history=queries.student_reward_history(client, student.id),
        form=form,
    )
