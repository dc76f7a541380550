"""Utility functions and helpers for address generation and time handling"""

from datetime import date, datetime, time, timedelta, timezone
import random
import string


# ============================================================================
# Clock Utilities
# ============================================================================

def utcnow() -> datetime:
    """Current time as an aware UTC datetime. Default clock for all stores."""
    return datetime.now(timezone.utc)


def local_date(moment: datetime) -> date:
    """Calendar date of `moment` in the server's local timezone"""
    return moment.astimezone().date()


def next_local_midnight(moment: datetime) -> datetime:
    """
    Start of the next local calendar day after `moment`.

    Daily counters roll over at this instant.
    """
    local = moment.astimezone()
    tomorrow = local.date() + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=local.tzinfo)


# ============================================================================
# Address Generation Utilities
# ============================================================================

LOCAL_PART_CHARS = string.ascii_lowercase + string.digits


def generate_local_part(length: int = 8) -> str:
    """Random lowercase alphanumeric local part"""
    return ''.join(random.choice(LOCAL_PART_CHARS) for _ in range(length))


def generate_address(domain: str, length: int = 8) -> str:
    """
    Generate a random email address.

    Args:
        domain: Domain to use
        length: Local part length

    Returns:
        Random email address
    """
    return f"{generate_local_part(length)}@{domain}"


def generate_dot_alias(parent_email: str, domain: str = 'gmail.com') -> str:
    """
    Insert random dots into the parent username.

    Gmail ignores dots in the local part, so every variant lands in the
    parent inbox. Never produces consecutive, leading or trailing dots.
    """
    username = parent_email.split('@')[0]
    if len(username) < 2:
        return f"{username}@{domain}"

    dotted = ''
    for i in range(len(username) - 1):
        dotted += username[i]
        if random.random() > 0.5 and username[i] != '.' and username[i + 1] != '.':
            dotted += '.'
    dotted += username[-1]

    return f"{dotted}@{domain}"


def generate_plus_alias(parent_email: str, domain: str = 'gmail.com', tag_length: int = 6) -> str:
    """Append a random +tag to the parent username"""
    username = parent_email.split('@')[0]
    tag = generate_local_part(tag_length)
    return f"{username}+{tag}@{domain}"
