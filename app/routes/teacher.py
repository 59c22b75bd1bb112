"""
Teacher routes for Classroom Ranks.

Contains all teacher-facing pages: dashboard, student roster with CSV
import/export, groups, point entry, reward shop, reports, settings
(criteria and classes), student account approvals, and classroom tools.

Every mutation is a backend write or remote procedure; failures are
flashed and the page is shown again.
"""

import random
from datetime import date

from flask import Blueprint, redirect, render_template, url_for, flash, request, current_app, abort

from app import queries
from app.auth import teacher_required
from app.extensions import backend
from app.models import UNLIMITED_STOCK
from app.utils.backend_client import BackendError
from app.utils.helpers import csv_response, format_points, read_csv_upload, round_half_up
from app.utils.ranks import rank_distribution
from app.utils import reports
from forms import (
    ActionForm, ApprovalForm, ClassForm, CriteriaForm, ExchangeForm, GroupForm,
    GroupMemberForm, PointEntryForm, RandomPickerForm, RewardForm, StudentForm,
    StudentImportForm,
)

# Create blueprint
teacher_bp = Blueprint('teacher', __name__, url_prefix='/teacher')

TOP_STUDENTS = 5
TOP_GROUPS = 3


def _class_choices(classes):
    return [(c.id, c.class_name) for c in classes]


def _or_404(record):
    if record is None:
        abort(404)
    return record


# -------------------- DASHBOARD --------------------

@teacher_bp.route('/')
@teacher_required
def dashboard():
    """Class overview: totals, rank spread, leaders."""
    client = backend.client
    students = queries.list_students(client, by_points=True)
    groups = queries.list_groups(client)
    ranks = queries.list_ranks(client)

    total_students = len(students)
    avg_points = round_half_up(sum(s.total_points for s in students) / total_students) if total_students else 0

    return render_template(
        'teacher_dashboard.html',
        current_page='dashboard',
        total_students=total_students,
        avg_points=avg_points,
        total_groups=len(groups),
        distribution=rank_distribution(students, ranks),
        top_students=students[:TOP_STUDENTS],
        top_groups=groups[:TOP_GROUPS],
        ranks=ranks,
    )


# -------------------- STUDENTS --------------------

def _filtered_roster():
    client = backend.client
    search = request.args.get('search', '')
    class_id = request.args.get('class_id', '')
    students = queries.filter_students(queries.list_students(client), search, class_id)
    return students, search, class_id


@teacher_bp.route('/students', methods=['GET', 'POST'])
@teacher_required
def students():
    """Roster with search/class filter, plus the add-student form."""
    client = backend.client
    classes = queries.list_classes(client)
    form = StudentForm()
    form.class_id.choices = _class_choices(classes)

    if form.validate_on_submit():
        try:
            queries.save_student(client, {
                'full_name': form.full_name.data.strip(),
                'gender': form.gender.data,
                'class_id': form.class_id.data,
            })
            flash("Student added.", "success")
            return redirect(url_for('teacher.students'))
        except BackendError as exc:
            flash(str(exc), "error")

    roster, search, class_id = _filtered_roster()
    return render_template(
        'teacher_students.html',
        current_page='students',
        students=roster,
        classes=classes,
        class_names={c.id: c.class_name for c in classes},
        search=search,
        class_id=class_id,
        form=form,
        import_form=StudentImportForm(),
        action_form=ActionForm(),
    )


@teacher_bp.route('/students/<student_id>/edit', methods=['GET', 'POST'])
@teacher_required
def edit_student(student_id):
    client = backend.client
    student = _or_404(queries.get_student(client, student_id))
    form = StudentForm(obj=student)
    form.class_id.choices = _class_choices(queries.list_classes(client))

    if form.validate_on_submit():
        try:
            queries.save_student(client, {
                'full_name': form.full_name.data.strip(),
                'gender': form.gender.data,
                'class_id': form.class_id.data,
            }, student_id=student.id)
            flash("Student updated.", "success")
            return redirect(url_for('teacher.students'))
        except BackendError as exc:
            flash(str(exc), "error")
    return render_template('teacher_edit_student.html', current_page='students', form=form, student=student)


@teacher_bp.route('/students/<student_id>/delete', methods=['POST'])
@teacher_required
def delete_student(student_id):
    """Deactivate a student (soft delete keeps point history)."""
    form = ActionForm()
    if form.validate_on_submit():
        try:
            queries.deactivate_student(backend.client, student_id)
            flash("Student removed.", "success")
        except BackendError as exc:
            flash(str(exc), "error")
    return redirect(url_for('teacher.students'))


@teacher_bp.route('/students/import', methods=['POST'])
@teacher_required
def import_students():
    """
    Import a roster CSV with ``full_name, gender, class_name`` columns.

    Class names are matched case-insensitively against active classes.
    """
    form = StudentImportForm()
    if not form.validate_on_submit():
        for errors in form.errors.values():
            for error in errors:
                flash(error, "error")
        return redirect(url_for('teacher.students'))

    client = backend.client
    try:
        rows = read_csv_upload(form.csv_file.data)
    except UnicodeDecodeError:
        flash("The file is not UTF-8 encoded CSV.", "error")
        return redirect(url_for('teacher.students'))

    try:
        added, errors = queries.import_students(client, rows, queries.list_classes(client))
    except BackendError as exc:
        flash(f"Import failed: {exc}", "error")
        return redirect(url_for('teacher.students'))

    current_app.logger.info(f"Roster import: {added} added, {errors} rejected")
    flash(f"Imported {added} student(s).", "success")
    if errors:
        flash(f"{errors} row(s) skipped (missing name or unknown class).", "warning")
    return redirect(url_for('teacher.students'))


@teacher_bp.route('/students/export')
@teacher_required
def export_students():
    """Export the (filtered) roster to CSV."""
    roster, _, _ = _filtered_roster()
    class_names = {c.id: c.class_name for c in queries.list_classes(backend.client)}
    rows = (
        [s.full_name, s.gender, class_names.get(s.class_id, ''), s.current_rank, s.total_points]
        for s in roster
    )
    filename = f"students-{date.today().isoformat()}.csv"
    return csv_response(['full_name', 'gender', 'class_name', 'rank', 'total_points'], rows, filename)


# -------------------- GROUPS --------------------

@teacher_bp.route('/groups', methods=['GET', 'POST'])
@teacher_required
def groups():
    """Groups with their members; create a group."""
    client = backend.client
    classes = queries.list_classes(client)
    form = GroupForm()
    form.class_id.choices = _class_choices(classes)

    if form.validate_on_submit():
        try:
            queries.create_group(client, {
                'group_name': form.group_name.data.strip(),
                'class_id': form.class_id.data,
            })
            flash("Group created.", "success")
            return redirect(url_for('teacher.groups'))
        except BackendError as exc:
            flash(str(exc), "error")

    members = queries.list_group_members(client)
    all_groups = queries.attach_members(queries.list_groups(client), members)
    roster = queries.list_students(client)

    member_forms = {}
    for group in all_groups:
        member_form = GroupMemberForm(prefix=f"g{group.id}")
        member_form.student_id.choices = [
            (s.id, s.full_name) for s in queries.students_outside_group(roster, members, group.id)
        ]
        member_forms[group.id] = member_form

    return render_template(
        'teacher_groups.html',
        current_page='groups',
        groups=all_groups,
        form=form,
        member_forms=member_forms,
        action_form=ActionForm(),
    )


@teacher_bp.route('/groups/<group_id>/members', methods=['POST'])
@teacher_required
def add_group_member(group_id):
    client = backend.client
    members = queries.list_group_members(client)
    form = GroupMemberForm(prefix=f"g{group_id}")
    form.student_id.choices = [
        (s.id, s.full_name)
        for s in queries.students_outside_group(queries.list_students(client), members, group_id)
    ]
    if form.validate_on_submit():
        try:
            count = queries.add_group_member(client, group_id, form.student_id.data)
            flash(f"Member added ({count} in group).", "success")
        except BackendError as exc:
            flash(str(exc), "error")
    else:
        flash("Choose a student who is not already in the group.", "warning")
    return redirect(url_for('teacher.groups'))


@teacher_bp.route('/groups/<group_id>/members/<member_id>/remove', methods=['POST'])
@teacher_required
def remove_group_member(group_id, member_id):
    form = ActionForm()
    if form.validate_on_submit():
        try:
            queries.remove_group_member(backend.client, member_id, group_id)
            flash("Member removed.", "success")
        except BackendError as exc:
            flash(str(exc), "error")
    return redirect(url_for('teacher.groups'))


@teacher_bp.route('/groups/<group_id>/delete', methods=['POST'])
@teacher_required
def delete_group(group_id):
    form = ActionForm()
    if form.validate_on_submit():
        try:
            queries.deactivate_group(backend.client, group_id)
            flash("Group removed.", "success")
        except BackendError as exc:
            flash(str(exc), "error")
    return redirect(url_for('teacher.groups'))


# -------------------- POINTS --------------------

@teacher_bp.route('/points', methods=['GET', 'POST'])
@teacher_required
def points():
    """Award or deduct points by criteria; history tab shows the latest entries."""
    client = backend.client
    form = PointEntryForm()

    if form.validate_on_submit():
        try:
            criteria = queries.get_criteria(client, form.criteria_id.data)
            if criteria is None:
                flash("That criteria no longer exists.", "warning")
            else:
                result = queries.award_points(client, form.student_id.data, criteria, form.note.data)
                verb = "Subtracted" if criteria.is_negative else "Added"
                final_points = abs(int(result.get('final_points') or 0))
                flash(f"{verb} {final_points} points for {result.get('student_name', 'student')}", "success")
                return redirect(url_for('teacher.points', **request.args))
        except BackendError as exc:
            flash(str(exc), "error")
    elif request.method == 'POST':
        flash("Select a student and a criteria.", "warning")

    tab = request.args.get('tab', 'add')
    search = request.args.get('search', '')
    class_id = request.args.get('class_id', '')
    criteria = queries.list_criteria(client)

    return render_template(
        'teacher_points.html',
        current_page='points',
        tab=tab,
        form=form,
        students=queries.filter_students(queries.list_students(client), search, class_id),
        classes=queries.list_classes(client),
        positive_criteria=[c for c in criteria if not c.is_negative],
        negative_criteria=[c for c in criteria if c.is_negative],
        history=queries.recent_point_history(client) if tab == 'history' else [],
        search=search,
        class_id=class_id,
    )


# -------------------- REWARDS --------------------

@teacher_bp.route('/rewards', methods=['GET', 'POST'])
@teacher_required
def rewards():
    """Reward shop management and recent exchanges."""
    client = backend.client
    classes = queries.list_classes(client)
    form = RewardForm()
    form.class_id.choices = _class_choices(classes)

    if form.validate_on_submit():
        try:
            queries.save_reward(client, _reward_values(form))
            flash("Reward added.", "success")
            return redirect(url_for('teacher.rewards'))
        except BackendError as exc:
            flash(str(exc), "error")

    return render_template(
        'teacher_rewards.html',
        current_page='rewards',
        rewards=queries.list_rewards(client),
        history=queries.recent_reward_history(client),
        form=form,
        action_form=ActionForm(),
    )


def _reward_values(form):
    return {
        'name': form.name.data.strip(),
        'required_points': form.required_points.data,
        'icon': form.icon.data,
        'stock': UNLIMITED_STOCK if form.stock.data is None else form.stock.data,
        'class_id': form.class_id.data,
    }


@teacher_bp.route('/rewards/<reward_id>/edit', methods=['GET', 'POST'])
@teacher_required
def edit_reward(reward_id):
    client = backend.client
    reward = _or_404(queries.get_reward(client, reward_id))
    form = RewardForm(obj=reward)
    form.class_id.choices = _class_choices(queries.list_classes(client))

    if form.validate_on_submit():
        try:
            queries.save_reward(client, _reward_values(form), reward_id=reward.id)
            flash(f"'{form.name.data}' has been updated.", "success")
            return redirect(url_for('teacher.rewards'))
        except BackendError as exc:
            flash(str(exc), "error")
    return render_template('teacher_edit_reward.html', current_page='rewards', form=form, reward=reward)


@teacher_bp.route('/rewards/<reward_id>/delete', methods=['POST'])
@teacher_required
def delete_reward(reward_id):
    """Deactivate a reward (soft delete keeps exchange history)."""
    form = ActionForm()
    if form.validate_on_submit():
        try:
            queries.deactivate_reward(backend.client, reward_id)
            flash("Reward removed from the shop.", "success")
        except BackendError as exc:
            flash(str(exc), "error")
    return redirect(url_for('teacher.rewards'))


@teacher_bp.route('/rewards/<reward_id>/exchange', methods=['GET', 'POST'])
@teacher_required
def exchange_reward(reward_id):
    """Redeem a reward on behalf of a student who has enough points."""
    client = backend.client
    reward = _or_404(queries.get_reward(client, reward_id))
    eligible = queries.eligible_students(queries.list_students(client), reward)
    form = ExchangeForm()
    form.student_id.choices = [(s.id, f"{s.full_name} ({format_points(s.total_points)})") for s in eligible]

    if reward.is_sold_out:
        if request.method == 'POST':
            flash("That reward is sold out.", "warning")
    elif form.validate_on_submit():
        try:
            result = queries.exchange_reward(client, form.student_id.data, reward.id)
            flash(f"Exchanged! {format_points(result.get('points_spent'))} points deducted.", "success")
            return redirect(url_for('teacher.rewards'))
        except BackendError as exc:
            flash(str(exc), "error")

    return render_template(
        'teacher_exchange.html',
        current_page='rewards',
        reward=reward,
        eligible=eligible,
        form=form,
    )


# -------------------- REPORTS --------------------

@teacher_bp.route('/reports')
@teacher_required
def reports_page():
    """Leaderboard, per-class summary, and one student's progress curve."""
    client = backend.client
    class_id = request.args.get('class_id', '')
    student_id = request.args.get('student_id', '')

    students = queries.list_students(client, by_points=True)
    classes = queries.list_classes(client)
    ranks = queries.list_ranks(client)
    filtered = [s for s in students if not class_id or s.class_id == class_id]

    progress = []
    selected = None
    if student_id:
        selected = next((s for s in students if s.id == student_id), None)
        progress = reports.progress_series(queries.full_point_history(client), student_id)

    return render_template(
        'teacher_reports.html',
        current_page='reports',
        leaderboard=reports.leaderboard(filtered, ranks),
        summary=reports.class_summary(classes, students),
        progress=progress,
        selected_student=selected,
        students=students,
        classes=classes,
        class_id=class_id,
        student_id=student_id,
    )


@teacher_bp.route('/reports/export')
@teacher_required
def export_leaderboard():
    """Download the leaderboard (respecting the class filter) as CSV."""
    class_id = request.args.get('class_id', '')
    students = queries.list_students(backend.client, class_id=class_id or None, by_points=True)
    filename = f"leaderboard-{date.today().isoformat()}.csv"
    return csv_response(reports.LEADERBOARD_HEADER, reports.leaderboard_rows(students), filename)


# -------------------- SETTINGS --------------------

@teacher_bp.route('/settings')
@teacher_required
def settings():
    """Criteria, classes, and the rank ladder."""
    client = backend.client
    classes = queries.list_classes(client)
    criteria = queries.list_criteria(client)

    criteria_form = CriteriaForm()
    criteria_form.class_id.choices = _class_choices(classes)

    return render_template(
        'teacher_settings.html',
        current_page='settings',
        positive_criteria=[c for c in criteria if not c.is_negative],
        negative_criteria=[c for c in criteria if c.is_negative],
        classes=classes,
        ranks=queries.list_ranks(client),
        criteria_form=criteria_form,
        class_form=ClassForm(),
        action_form=ActionForm(),
    )


def _criteria_values(form):
    return {
        'name': form.name.data.strip(),
        'base_points': form.base_points.data,
        'type': form.type.data,
        'icon': form.icon.data,
        'class_id': form.class_id.data,
    }


@teacher_bp.route('/settings/criteria', methods=['POST'])
@teacher_required
def create_criteria():
    client = backend.client
    form = CriteriaForm()
    form.class_id.choices = _class_choices(queries.list_classes(client))
    if form.validate_on_submit():
        try:
            queries.save_criteria(client, _criteria_values(form))
            flash("Criteria added.", "success")
        except BackendError as exc:
            flash(str(exc), "error")
    else:
        flash("Please complete the criteria form.", "warning")
    return redirect(url_for('teacher.settings'))


@teacher_bp.route('/settings/criteria/<criteria_id>/edit', methods=['GET', 'POST'])
@teacher_required
def edit_criteria(criteria_id):
    client = backend.client
    criteria = _or_404(queries.get_criteria(client, criteria_id))
    form = CriteriaForm(obj=criteria)
    form.class_id.choices = _class_choices(queries.list_classes(client))

    if form.validate_on_submit():
        try:
            queries.save_criteria(client, _criteria_values(form), criteria_id=criteria.id)
            flash("Criteria updated.", "success")
            return redirect(url_for('teacher.settings'))
        except BackendError as exc:
            flash(str(exc), "error")
    return render_template('teacher_edit_criteria.html', current_page='settings', form=form, criteria=criteria)


@teacher_bp.route('/settings/criteria/<criteria_id>/delete', methods=['POST'])
@teacher_required
def delete_criteria(criteria_id):
    form = ActionForm()
    if form.validate_on_submit():
        try:
            queries.deactivate_criteria(backend.client, criteria_id)
            flash("Criteria removed.", "success")
        except BackendError as exc:
            flash(str(exc), "error")
    return redirect(url_for('teacher.settings'))


def _class_values(form):
    return {
        'class_name': form.class_name.data.strip(),
        'teacher_name': (form.teacher_name.data or '').strip(),
        'school_year': (form.school_year.data or '').strip(),
    }


@teacher_bp.route('/settings/classes', methods=['POST'])
@teacher_required
def create_class():
    form = ClassForm()
    if form.validate_on_submit():
        try:
            queries.save_class(backend.client, _class_values(form))
            flash("Class created.", "success")
        except BackendError as exc:
            flash(str(exc), "error")
    else:
        flash("A class needs a name.", "warning")
    return redirect(url_for('teacher.settings'))


@teacher_bp.route('/settings/classes/<class_id>/edit', methods=['GET', 'POST'])
@teacher_required
def edit_class(class_id):
    client = backend.client
    school_class = _or_404(queries.get_class(client, class_id))
    form = ClassForm(obj=school_class)

    if form.validate_on_submit():
        try:
            queries.save_class(client, _class_values(form), class_id=school_class.id)
            flash("Class updated.", "success")
            return redirect(url_for('teacher.settings'))
        except BackendError as exc:
            flash(str(exc), "error")
    return render_template('teacher_edit_class.html', current_page='settings', form=form, school_class=school_class)


@teacher_bp.route('/settings/classes/<class_id>/delete', methods=['POST'])
@teacher_required
def delete_class(class_id):
    form = ActionForm()
    if form.validate_on_submit():
        try:
            queries.deactivate_class(backend.client, class_id)
            flash("Class removed.", "success")
        except BackendError as exc:
            flash(str(exc), "error")
    return redirect(url_for('teacher.settings'))


# -------------------- APPROVALS --------------------

def _approval_form(classes):
    form = ApprovalForm()
    form.class_id.choices = _class_choices(classes)
    return form


@teacher_bp.route('/approvals')
@teacher_required
def approvals():
    """Accounts waiting for approval (and previously rejected ones)."""
    client = backend.client
    try:
        accounts = queries.pending_students(client)
    except BackendError as exc:
        current_app.logger.error(f"Loading pending students failed: {exc}")
        flash(f"Could not load pending accounts: {exc}", "error")
        accounts = []
    classes = queries.list_classes(client)

    return render_template(
        'teacher_approvals.html',
        current_page='approvals',
        accounts=accounts,
        pending_count=sum(1 for a in accounts if a.is_pending),
        rejected_count=sum(1 for a in accounts if not a.is_pending),
        classes=classes,
        form=_approval_form(classes),
        action_form=ActionForm(),
    )


@teacher_bp.route('/approvals/<user_id>/approve', methods=['POST'])
@teacher_required
def approve(user_id):
    client = backend.client
    form = _approval_form(queries.list_classes(client))
    if not form.validate_on_submit():
        flash("Choose a class before approving.", "error")
        return redirect(url_for('teacher.approvals'))
    try:
        result = queries.approve_student(client, user_id, form.class_id.data)
        flash(f"Approved {result.get('student_name', 'student')} and added them to the class.", "success")
    except BackendError as exc:
        flash(str(exc) or "Approval failed.", "error")
    return redirect(url_for('teacher.approvals'))


@teacher_bp.route('/approvals/<user_id>/reject', methods=['POST'])
@teacher_required
def reject(user_id):
    form = ActionForm()
    if form.validate_on_submit():
        try:
            result = queries.reject_student(backend.client, user_id)
            flash(f"Rejected {result.get('student_name', 'student')}.", "success")
        except BackendError as exc:
            flash(str(exc) or "Rejection failed.", "error")
    return redirect(url_for('teacher.approvals'))


@teacher_bp.route('/approvals/approve-all', methods=['POST'])
@teacher_required
def approve_all():
    """Approve every pending account into the chosen class."""
    client = backend.client
    form = _approval_form(queries.list_classes(client))
    if not form.validate_on_submit():
        flash("Choose a class before approving.", "error")
        return redirect(url_for('teacher.approvals'))

    try:
        pending_ids = [a.id for a in queries.pending_students(client) if a.is_pending]
    except BackendError as exc:
        flash(str(exc), "error")
        return redirect(url_for('teacher.approvals'))

    if not pending_ids:
        flash("No pending accounts.", "info")
        return redirect(url_for('teacher.approvals'))

    approved, attempted = queries.approve_all(client, pending_ids, form.class_id.data)
    flash(f"Approved {approved}/{attempted} students into the class.", "success" if approved == attempted else "warning")
    return redirect(url_for('teacher.approvals'))


# -------------------- TOOLS --------------------

@teacher_bp.route('/tools', methods=['GET', 'POST'])
@teacher_required
def tools():
    """Random student picker and the class point feed."""
    client = backend.client
    classes = queries.list_classes(client)
    form = RandomPickerForm()
    form.class_id.choices = _class_choices(classes)

    picked = []
    if form.validate_on_submit():
        pool = queries.list_students(client, class_id=form.class_id.data)
        if not pool:
            flash("That class has no students.", "warning")
        else:
            picked = random.sample(pool, min(form.count.data, len(pool)))

    feed_class_id = request.args.get('class_id', '')
    feed = queries.recent_point_history(client)
    if feed_class_id:
        feed = [h for h in feed if h.student and h.student.class_id == feed_class_id]

    return render_template(
        'teacher_tools.html',
        current_page='tools',
        form=form,
        picked=picked,
        classes=classes,
        feed=feed,
        feed_class_id=feed_class_id,
    )
