"""Utility helpers for OpenGather."""

from __future__ import annotations

from datetime import UTC, datetime
import html
import re

from markupsafe import Markup

_link_pattern = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
_bold_pattern = re.compile(r"\*\*(.+?)\*\*")
_italic_pattern = re.compile(r"(?<!\*)\*(?!\*)([^*]+?)(?<!\*)\*(?!\*)")
_email_pattern = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Normalize aware datetimes to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def is_valid_email(value: str | None) -> bool:
    return bool(value) and _email_pattern.match(value.strip()) is not None


def normalize_email(value: str) -> str:
    return value.strip().lower()


def format_event_date(value: datetime) -> str:
    """Return a long date such as 'Sunday, June 1, 2025'."""
    return f"{value:%A}, {value:%B} {value.day}, {value.year}"


def format_event_time(value: datetime) -> str:
    """Return a 12-hour clock time such as '6:00 PM'."""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def event_type_from_name(name: str | None) -> str:
    """Derive the display event type from an invitation's group name."""
    label = name or ""
    if "Coffee" in label:
        return "Coffee"
    if "Lunch" in label:
        return "Lunch"
    return "Dinner"


def _sanitize_href(raw: str | None) -> str | None:
    """Return a safe URL for anchors or ``None`` when unsafe."""

    normalized = (raw or "").strip()
    if not normalized:
        return None
    lowered = normalized.lower()
    if lowered.startswith(("http://", "https://", "mailto:")) or normalized.startswith(
        ("/", "#")
    ):
        return html.escape(normalized, quote=True)
    return None


def _render_inline(text: str) -> str:
    bolded = _bold_pattern.sub(lambda match: f"<strong>{match.group(1)}</strong>", text)
    emphasized = _italic_pattern.sub(lambda match: f"<em>{match.group(1)}</em>", bolded)

    def replace_link(match: re.Match[str]) -> str:
        href = _sanitize_href(html.unescape(match.group(2)))
        if not href:
            return match.group(0)
        label = _render_inline(match.group(1))
        return f'<a href="{href}" rel="nofollow noopener noreferrer">{label}</a>'

    return _link_pattern.sub(replace_link, emphasized)


def render_markdown(value: str | None) -> Markup:
    """Convert a small Markdown subset into sanitized HTML.

    Used for organiser messages in invitation emails and for message board
    posts. Paragraphs are split on blank lines; single newlines become
    ``<br>``.
    """

    if not value:
        return Markup("")

    escaped = html.escape(value.strip())
    if not escaped:
        return Markup("")

    paragraphs = [
        chunk.strip() for chunk in re.split(r"\n\s*\n", escaped) if chunk.strip()
    ]
    blocks = [
        "<p>"
        + "<br>".join(_render_inline(line.strip()) for line in chunk.splitlines())
        + "</p>"
        for chunk in paragraphs
    ]
    return Markup("\n".join(blocks))


def humanize_time(value: datetime | None, *, now: datetime | None = None) -> str:
    """Return a friendly string such as 'in 2 weeks' or '3 hours ago'."""
    if not value:
        return ""
    now = now or utcnow()
    delta_seconds = (value - now).total_seconds()
    past = delta_seconds < 0
    seconds = abs(delta_seconds)

    units = [
        ("year", 365 * 24 * 3600),
        ("month", 30 * 24 * 3600),
        ("week", 7 * 24 * 3600),
        ("day", 24 * 3600),
        ("hour", 3600),
        ("minute", 60),
    ]

    amount = 0
    label = "minute"
    for name, step in units:
        value_count = int(seconds // step)
        if value_count >= 1:
            amount = value_count
            label = name
            break
    else:
        return "in moments" if not past else "moments ago"

    if amount != 1:
        label = f"{label}s"
    if past:
        return f"{amount} {label} ago"
    return f"in {amount} {label}"
