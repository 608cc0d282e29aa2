from datetime import datetime, date, timezone


def utc_now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_due_date(value):
    """
    Accepts a datetime, a date or an ISO 8601 string ("2025-12-31",
    "2025-12-31T00:00:00.000Z") and returns a naive UTC datetime.
    Raises ValueError for anything else.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, datetime.min.time())
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        # fromisoformat only learned the "Z" suffix in 3.11
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError("dueDate must be an ISO 8601 date or datetime")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
