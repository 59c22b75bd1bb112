"""
Table reads/writes and remote procedure calls used by the pages.

Each function takes the request's backend client (``backend.client``) and
returns record types from :mod:`app.models`. Business rules (point
multipliers, rank promotion, stock, approvals) live in the backend's
procedures; nothing here recomputes them.
"""

from flask import current_app

from app.models import (
    Criteria, Group, GroupMember, Notification, PendingStudent, PointHistory,
    Profile, Rank, Reward, RewardHistory, SchoolClass, Student,
)
from app.utils.backend_client import BackendError
from app.utils.ranks import DEFAULT_RANKS

ACTIVE = {'is_active': True}

TEACHER_HISTORY_LIMIT = 50
STUDENT_HISTORY_LIMIT = 20
NOTIFICATION_LIMIT = 20

POINT_HISTORY_COLUMNS = '*, student:students(full_name, current_rank, class_id), criteria:criteria(name, type, icon)'
REWARD_HISTORY_COLUMNS = '*, student:students(full_name), reward:rewards(name, icon)'


# -------------------- PROFILES --------------------

def get_profile_row(client, user_id):
    row = client.select_one('profiles', filters={'id': user_id})
    return Profile.from_row(row) if row else None


def my_profile(client):
    data = client.rpc('get_my_profile')
    if isinstance(data, list):
        data = data[0] if data else None
    return Profile.from_row(data) if isinstance(data, dict) else None


# -------------------- CLASSES --------------------

def list_classes(client):
    rows = client.select('classes', filters=ACTIVE, order='class_name')
    return [SchoolClass.from_row(r) for r in rows]


def get_class(client, class_id):
    row = client.select_one('classes', filters={'id': class_id})
    return SchoolClass.from_row(row) if row else None


def save_class(client, values, class_id=None):
    if class_id:
        return client.update('classes', values, filters={'id': class_id})
    return client.insert('classes', values)


def deactivate_class(client, class_id):
    return client.update('classes', {'is_active': False}, filters={'id': class_id})


# -------------------- STUDENTS --------------------

def list_students(client, class_id=None, by_points=False):
    filters = dict(ACTIVE)
    if class_id:
        filters['class_id'] = class_id
    if by_points:
        rows = client.select('students', filters=filters, order='total_points', desc=True)
    else:
        rows = client.select('students', filters=filters, order='full_name')
    return [Student.from_row(r) for r in rows]


def get_student(client, student_id):
    row = client.select_one('students', filters={'id': student_id})
    return Student.from_row(row) if row else None


def get_student_for_user(client, user_id):
    row = client.select_one('students', filters={'user_id': user_id})
    return Student.from_row(row) if row else None


def save_student(client, values, student_id=None):
    if student_id:
        return client.update('students', values, filters={'id': student_id})
    return client.insert('students', values)


def deactivate_student(client, student_id):
    return client.update('students', {'is_active': False}, filters={'id': student_id})


def import_students(client, rows, classes):
    """
    Create students from CSV rows with ``full_name, gender, class_name``.

    Returns ``(added, errors)``; rows with a blank name or an unknown class
    are counted as errors and skipped.
    """
    class_ids = {c.class_name.strip().lower(): c.id for c in classes}
    records = []
    errors = 0
    for row in rows:
        full_name = (row.get('full_name') or row.get('Full name') or '').strip()
        gender = (row.get('gender') or row.get('Gender') or 'male').strip().lower()
        class_name = (row.get('class_name') or row.get('Class') or '').strip().lower()
        class_id = class_ids.get(class_name)
        if not full_name or not class_id:
            errors += 1
            continue
        if gender not in ('male', 'female', 'other'):
            gender = 'other'
        records.append({'full_name': full_name, 'gender': gender, 'class_id': class_id})

    if records:
        client.insert('students', records)
    return len(records), errors


def filter_students(students, search='', class_id=''):
    """Case-insensitive name search plus optional class filter."""
    needle = (search or '').strip().lower()
    return [
        s for s in students
        if needle in (s.full_name or '').lower() and (not class_id or s.class_id == class_id)
    ]


# -------------------- GROUPS --------------------

def list_groups(client):
    rows = client.select('groups', filters=ACTIVE, order='total_points', desc=True)
    return [Group.from_row(r) for r in rows]


def list_group_members(client):
    rows = client.select('group_members', columns='*, student:students(*)')
    return [GroupMember.from_row(r) for r in rows]


def create_group(client, values):
    return client.insert('groups', values)


def deactivate_group(client, group_id):
    return client.update('groups', {'is_active': False}, filters={'id': group_id})


def _recount_members(client, group_id):
    members = client.select('group_members', columns='id', filters={'group_id': group_id})
    client.update('groups', {'member_count': len(members)}, filters={'id': group_id})
    return len(members)


def add_group_member(client, group_id, student_id):
    client.insert('group_members', {'group_id': group_id, 'student_id': student_id})
    return _recount_members(client, group_id)


def remove_group_member(client, member_id, group_id):
    client.delete('group_members', filters={'id': member_id})
    return _recount_members(client, group_id)


def attach_members(groups, members):
    for group in groups:
        group.members = [m for m in members if m.group_id == group.id]
    return groups


def students_outside_group(students, members, group_id):
    member_ids = {m.student_id for m in members if m.group_id == group_id}
    return [s for s in students if s.id not in member_ids]


# -------------------- CRITERIA & RANKS --------------------

def list_criteria(client):
    rows = client.select('criteria', filters=ACTIVE, order='type')
    return [Criteria.from_row(r) for r in rows]


def get_criteria(client, criteria_id):
    row = client.select_one('criteria', filters={'id': criteria_id})
    return Criteria.from_row(row) if row else None


def save_criteria(client, values, criteria_id=None):
    if criteria_id:
        return client.update('criteria', values, filters={'id': criteria_id})
    return client.insert('criteria', values)


def deactivate_criteria(client, criteria_id):
    return client.update('criteria', {'is_active': False}, filters={'id': criteria_id})


def list_ranks(client):
    """Ranks ordered by ``sort_order``; the built-in ladder if none are stored."""
    rows = client.select('ranks', order='sort_order')
    if not rows:
        return list(DEFAULT_RANKS)
    return [Rank.from_row(r) for r in rows]


# -------------------- POINT HISTORY --------------------

def recent_point_history(client, limit=TEACHER_HISTORY_LIMIT):
    rows = client.select('point_history', columns=POINT_HISTORY_COLUMNS,
                         order='created_at', desc=True, limit=limit)
    return [PointHistory.from_row(r) for r in rows]


def student_point_history(client, student_id, limit=STUDENT_HISTORY_LIMIT):
    rows = client.select('point_history', columns='*, criteria:criteria(name, type, icon)',
                         filters={'student_id': student_id},
                         order='created_at', desc=True, limit=limit)
    return [PointHistory.from_row(r) for r in rows]


def full_point_history(client):
    rows = client.select('point_history', order='created_at')
    return [PointHistory.from_row(r) for r in rows]


# -------------------- REWARDS --------------------

def list_rewards(client):
    rows = client.select('rewards', filters=ACTIVE, order='required_points')
    return [Reward.from_row(r) for r in rows]


def get_reward(client, reward_id):
    row = client.select_one('rewards', filters={'id': reward_id})
    return Reward.from_row(row) if row else None


def save_reward(client, values, reward_id=None):
    if reward_id:
        return client.update('rewards', values, filters={'id': reward_id})
    return client.insert('rewards', values)


def deactivate_reward(client, reward_id):
    return client.update('rewards', {'is_active': False}, filters={'id': reward_id})


def recent_reward_history(client, limit=TEACHER_HISTORY_LIMIT):
    rows = client.select('reward_history', columns=REWARD_HISTORY_COLUMNS,
                         order='exchanged_at', desc=True, limit=limit)
    return [RewardHistory.from_row(r) for r in rows]


def student_reward_history(client, student_id, limit=STUDENT_HISTORY_LIMIT):
    rows = client.select('reward_history', columns='*, reward:rewards(name, icon)',
                         filters={'student_id': student_id},
                         order='exchanged_at', desc=True, limit=limit)
    return [RewardHistory.from_row(r) for r in rows]


def eligible_students(students, reward):
    return [s for s in students if s.total_points >= reward.required_points]


# -------------------- NOTIFICATIONS --------------------

def list_notifications(client, user_id, limit=NOTIFICATION_LIMIT):
    rows = client.select('notifications', filters={'user_id': user_id},
                         order='created_at', desc=True, limit=limit)
    return [Notification.from_row(r) for r in rows]


def mark_notification_read(client, notification_id, user_id):
    return client.update('notifications', {'is_read': True},
                         filters={'id': notification_id, 'user_id': user_id})


def mark_all_notifications_read(client, notifications):
    """Mark the unread ones read; returns how many were marked."""
    unread_ids = [n.id for n in notifications if not n.is_read]
    if not unread_ids:
        return 0
    client.update('notifications', {'is_read': True}, in_filter=('id', unread_ids))
    return len(unread_ids)


# -------------------- REMOTE PROCEDURES --------------------

def award_points(client, student_id, criteria, note=''):
    """Run ``add_points`` or ``subtract_points`` depending on the criteria type."""
    procedure = 'subtract_points' if criteria.is_negative else 'add_points'
    return client.call_procedure(procedure, {
        'p_student_id': student_id,
        'p_criteria_id': criteria.id,
        'p_note': note or '',
    })


def exchange_reward(client, student_id, reward_id, note=''):
    return client.call_procedure('exchange_reward', {
        'p_student_id': student_id,
        'p_reward_id': reward_id,
        'p_note': note or '',
    })


def pending_students(client):
    rows = client.rpc('get_pending_students') or []
    return [PendingStudent.from_row(r) for r in rows]


def approve_student(client, user_id, class_id):
    return client.call_procedure('approve_student', {
        'p_user_id': user_id,
        'p_class_id': class_id,
    })


def reject_student(client, user_id):
    return client.call_procedure('reject_student', {'p_user_id': user_id})


def approve_all(client, user_ids, class_id):
    """Approve each account in turn; failures are logged and skipped."""
    approved = 0
    for user_id in user_ids:
        try:
            approve_student(client, user_id, class_id)
            approved += 1
        except BackendError as exc:
            current_app.logger.warning(f"Bulk approval skipped {user_id}: {exc}")
    return approved, len(user_ids)
