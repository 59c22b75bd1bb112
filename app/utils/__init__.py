"""
Utility modules for Classroom Ranks.

This package contains the backend gateway and reusable helpers:
- backend_client: Supabase wrapper and the errors it raises
- helpers: Common utility functions (date formatting, CSV, URL safety checks)
- ranks: Rank ladder lookups and progress
- reports: Leaderboard and progress calculations
"""

from app.utils.helpers import is_safe_url, round_half_up

__all__ = [
    'is_safe_url',
    'round_half_up',
]
