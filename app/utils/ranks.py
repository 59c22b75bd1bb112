"""
Rank ladder helpers.

The backend promotes students and stores ``current_rank`` and
``current_multiplier`` on each student row. These helpers only answer
display questions: which rank a name refers to, which rank comes next,
how far a student is along the way, and how a class is spread across the
ladder.
"""

from typing import Iterable, List, Optional

from app.models import Rank


DEFAULT_RANKS = [
    Rank(rank_name='Binh nhì', min_points=0, multiplier=1.0, icon='🎖️', color='#9CA3AF',
         description='New recruit', sort_order=1),
    Rank(rank_name='Binh nhất', min_points=50, multiplier=1.1, icon='🎖️', color='#6B7280',
         description='Has the basics down', sort_order=2),
    Rank(rank_name='Hạ sĩ', min_points=120, multiplier=1.2, icon='🏅', color='#D97706',
         description='Promising soldier', sort_order=3),
    Rank(rank_name='Trung sĩ', min_points=200, multiplier=1.3, icon='🏅', color='#B45309',
         description='Outstanding soldier', sort_order=4),
    Rank(rank_name='Thượng sĩ', min_points=300, multiplier=1.5, icon='🏅', color='#92400E',
         description='Elite soldier', sort_order=5),
    Rank(rank_name='Thiếu úy', min_points=450, multiplier=1.7, icon='🎗️', color='#059669',
         description='Newly commissioned officer', sort_order=6),
    Rank(rank_name='Trung úy', min_points=650, multiplier=2.0, icon='🎗️', color='#047857',
         description='Experienced officer', sort_order=7),
    Rank(rank_name='Thượng úy', min_points=900, multiplier=2.3, icon='🎗️', color='#065F46',
         description='Skilled officer', sort_order=8),
    Rank(rank_name='Đại úy', min_points=1200, multiplier=2.5, icon='🥇', color='#1D4ED8',
         description='Senior officer', sort_order=9),
    Rank(rank_name='Thiếu tá', min_points=1600, multiplier=3.0, icon='⭐', color='#7C3AED',
         description='Highest rank', sort_order=10),
]


def _by_points(ranks: Optional[Iterable[Rank]]) -> List[Rank]:
    return sorted(ranks or DEFAULT_RANKS, key=lambda r: r.min_points)


def get_rank_info(rank_name, ranks=None) -> Rank:
    """Return the rank called ``rank_name``, or the lowest rank if unknown."""
    ladder = list(ranks or DEFAULT_RANKS)
    for rank in ladder:
        if rank.rank_name == rank_name:
            return rank
    return ladder[0]


def get_next_rank(points, ranks=None) -> Optional[Rank]:
    """Return the first rank above ``points``, or None at the top."""
    for rank in _by_points(ranks):
        if rank.min_points > points:
            return rank
    return None


def get_rank_progress(points, ranks=None) -> float:
    """Percent progress from the current rank to the next, clamped to 0..100."""
    ladder = _by_points(ranks)
    index = next(
        i for i, _ in enumerate(ladder)
        if i == len(ladder) - 1 or points < ladder[i + 1].min_points
    )
    if index == len(ladder) - 1:
        return 100.0

    current, upcoming = ladder[index], ladder[index + 1]
    progress = (points - current.min_points) / (upcoming.min_points - current.min_points) * 100
    return min(max(progress, 0.0), 100.0)


def rank_distribution(students, ranks=None):
    """
    Count students per rank band.

    A band runs from a rank's ``min_points`` up to (not including) the
    ``min_points`` of the rank whose ``sort_order`` is one higher; the band
    of a rank with no successor is unbounded.
    """
    ladder = sorted(ranks or DEFAULT_RANKS, key=lambda r: r.sort_order)
    by_order = {rank.sort_order: rank for rank in ladder}

    distribution = []
    for rank in ladder:
        upcoming = by_order.get(rank.sort_order + 1)
        count = 0
        for student in students:
            points = student.total_points
            if upcoming is not None:
                in_band = rank.min_points <= points < upcoming.min_points
            else:
                in_band = points >= rank.min_points
            if in_band:
                count += 1
        distribution.append({
            'name': rank.rank_name,
            'count': count,
            'icon': rank.icon,
            'color': rank.color,
        })
    return distribution
