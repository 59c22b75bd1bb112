"""
Common utility functions for Classroom Ranks.

This module provides reusable helper functions for:
- Date/time parsing and display in the viewer's timezone
- Point, gender and avatar formatting for templates
- URL safety validation for redirects
- CSV export (with formula-injection protection)
- Markdown to HTML conversion with sanitization
"""

import csv
import io
import math
import urllib.parse
from datetime import date, datetime, timezone
from urllib.parse import urlparse, urljoin

import bleach
import markdown
import pytz
from flask import Response, current_app, has_request_context, request, session
from markupsafe import Markup


GENDER_LABELS = {
    'male': 'Male',
    'female': 'Female',
    'other': 'Other',
}


# -------------------- DATES --------------------

def parse_timestamp(value):
    """Parse a backend timestamp (ISO-8601 string) into an aware UTC datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, datetime.min.time())
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _display_timezone():
    default_name = current_app.config.get('DISPLAY_TIMEZONE', 'Asia/Ho_Chi_Minh')
    tz_name = session.get('timezone', default_name) if has_request_context() else default_name
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        current_app.logger.warning(f"Invalid timezone '{tz_name}', defaulting to {default_name}.")
        return pytz.timezone(default_name)


def format_datetime(value, fmt='%d/%m/%Y %H:%M'):
    """Convert a UTC timestamp to the viewer's timezone and format it."""
    dt = parse_timestamp(value)
    if dt is None:
        return ''
    return dt.astimezone(_display_timezone()).strftime(fmt)


def format_date(value):
    return format_datetime(value, fmt='%d/%m/%Y')


# -------------------- DISPLAY --------------------

def round_half_up(value):
    """Round to the nearest integer, halves upward: 12.5 -> 13, -12.5 -> -12."""
    return math.floor(value + 0.5)


def format_points(points):
    """Group thousands with dots: 12345 -> '12.345'."""
    if points is None:
        return '0'
    return f"{int(points):,}".replace(',', '.')


def gender_label(gender):
    return GENDER_LABELS.get(gender, gender)


def avatar_url(name):
    """Generated initials avatar for students without an uploaded picture."""
    return (
        "https://ui-avatars.com/api/?name="
        f"{urllib.parse.quote(name or '')}&background=FF6B35&color=fff&bold=true&size=128"
    )


def is_safe_url(target):
    """
    Ensure a redirect URL is safe by checking if it's on the same domain.
    """
    if not target:
        return True
    ref_url = urlparse(request.host_url)
    test_url = urlparse(urljoin(request.host_url, target))
    return test_url.scheme in ('http', 'https') and ref_url.netloc == test_url.netloc


# -------------------- CSV --------------------

def sanitize_csv_field(value):
    """Prevent CSV injection by prefixing risky leading characters."""
    if value is None:
        return ""

    text = str(value)
    if text.startswith(("=", "+", "-", "@")):
        return f"'{text}"
    return text


def csv_response(header, rows, filename):
    """Build a downloadable CSV response; cells are sanitized."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(header)
    for row in rows:
        writer.writerow([
            cell if isinstance(cell, (int, float)) else sanitize_csv_field(cell)
            for cell in row
        ])

    return Response(
        output.getvalue(),
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename={filename}'}
    )


def read_csv_upload(file_storage):
    """Return DictReader rows for an uploaded CSV (BOM tolerated)."""
    content = file_storage.stream.read().decode("UTF-8-sig")
    return list(csv.DictReader(io.StringIO(content, newline=None)))


# -------------------- MARKDOWN --------------------

def render_markdown(text):
    """
    Convert Markdown text to sanitized HTML.

    Notification messages are written by backend procedures and may carry
    simple formatting (bold, lists, links).

    Returns:
        Markup object containing sanitized HTML (safe for rendering in templates)
    """
    if not text:
        return Markup('')

    md = markdown.Markdown(extensions=['extra', 'nl2br', 'sane_lists'])
    html = md.convert(text)

    allowed_tags = [
        'p', 'br', 'span',
        'strong', 'em', 'u', 's', 'del', 'code',
        'ul', 'ol', 'li',
        'a',
    ]
    allowed_attributes = {'a': ['href', 'title', 'rel']}

    cleaner = bleach.Cleaner(
        tags=allowed_tags,
        attributes=allowed_attributes,
        protocols=['http', 'https', 'mailto'],
        strip=True,
        strip_comments=True,
    )
    return Markup(cleaner.clean(html))
