"""
Heuristics for tasks that arrive without full planning data.

- estimate_duration: keyword lookup on name/description, then length of text
- calculate_do_date: work back from the due date by task size, never before today
"""

from datetime import date, timedelta

DURATION_ESTIMATES: dict[str, int] = {
    "call": 30,
    "meeting": 60,
    "review": 45,
    "write": 90,
    "email": 15,
    "research": 120,
    "planning": 60,
}


def estimate_duration(name: str, description: str | None = None, default: int = 30) -> int:
    """
    Guess a task's length in minutes.

    The first keyword found (in DURATION_ESTIMATES order) wins. Otherwise
    long descriptions count as longer work: more than 20 words is an hour,
    more than 10 is 45 minutes, anything shorter gets the default.
    """
    text = f"{name or ''} {description or ''}".lower()

    for keyword, minutes in DURATION_ESTIMATES.items():
        if keyword in text:
            return minutes

    word_count = len(text.split())
    if word_count > 20:
        return 60
    if word_count > 10:
        return 45
    return default


def calculate_do_date(due_date: date, duration_minutes: int, today: date, buffer_days: int = 1) -> date:
    """
    Day to start working on a task so it lands before its due date.

    Two hours or more starts at least two days early, one hour or more at
    least one day early (buffer_days raises either floor). Shorter tasks are
    done on the due date itself.
    """
    if duration_minutes >= 120:
        days_before = max(2, buffer_days)
    elif duration_minutes >= 60:
        days_before = max(1, buffer_days)
    else:
        days_before = 0

    return max(due_date - timedelta(days=days_before), today)
