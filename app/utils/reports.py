"""Report builders for the teacher reports page and its CSV export."""

from datetime import datetime, timezone

from app.utils.helpers import format_date, parse_timestamp, round_half_up
from app.utils.ranks import get_rank_info

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def leaderboard(students, ranks=None):
    """Number students 1..n in the order given (callers sort by points)."""
    return [
        {
            'position': position,
            'student': student,
            'rank_info': get_rank_info(student.current_rank, ranks),
        }
        for position, student in enumerate(students, start=1)
    ]


def class_summary(classes, students):
    """Per-class student count, point total and rounded average."""
    summary = []
    for school_class in classes:
        members = [s for s in students if s.class_id == school_class.id]
        total = sum(s.total_points for s in members)
        average = round_half_up(total / len(members)) if members else 0
        summary.append({
            'class_name': school_class.class_name,
            'count': len(members),
            'total': total,
            'avg': average,
        })
    return summary


def progress_series(history, student_id):
    """
    Cumulative points over time for one student.

    Entries are ordered by ``created_at``; each plotted value is the running
    total floored at zero, while the running total itself may dip below.
    """
    entries = [h for h in history if h.student_id == student_id]
    entries.sort(key=lambda h: parse_timestamp(h.created_at) or _EPOCH)

    cumulative = 0
    series = []
    for entry in entries:
        cumulative += entry.final_points
        series.append({'date': format_date(entry.created_at), 'points': max(cumulative, 0)})
    return series


LEADERBOARD_HEADER = ['#', 'Full name', 'Rank', 'Multiplier', 'Total points']


def leaderboard_rows(students):
    for position, student in enumerate(students, start=1):
        yield [
            position,
            student.full_name,
            student.current_rank,
            student.current_multiplier,
            student.total_points,
        ]
