"""
Chart bucketing and summary statistics for logged entries.

Only the calendar-date part of an entry's ``date`` is used, so an entry
logged late in the evening never drifts into the next day through a
timezone conversion.
"""

import datetime
from collections import OrderedDict
from typing import Dict, Iterable, List

VIEWS = ('daily', 'weekly', 'monthly')

MONDAY = 0
SUNDAY = 6


def entry_day(date_str: str) -> datetime.date:
    """Return the local calendar day of an ISO date or datetime string."""
    return datetime.date.fromisoformat(date_str.split('T')[0][:10])


def week_start(day: datetime.date, week_starts_on: int = MONDAY) -> datetime.date:
    offset = (day.weekday() - week_starts_on) % 7
    return day - datetime.timedelta(days=offset)


def bucket_key(day: datetime.date, view: str, week_starts_on: int = MONDAY) -> str:
    if view == 'daily':
        return day.strftime('%m/%d')
    if view == 'weekly':
        return week_start(day, week_starts_on).strftime('%m/%d')
    if view == 'monthly':
        return day.replace(day=1).strftime('%b %Y')
    raise ValueError(f'Unknown view {view!r}; expected one of {", ".join(VIEWS)}')


def aggregate(entries: Iterable[Dict], field: str, view: str = 'daily',
              week_starts_on: int = MONDAY) -> List[Dict]:
    """Sum ``field`` per day, week or month.

    Entries are ordered by date first and buckets keep first-seen order, so
    the result reads left to right on a chart.
    """
    if view not in VIEWS:
        raise ValueError(f'Unknown view {view!r}; expected one of {", ".join(VIEWS)}')
    ordered = sorted(entries, key=lambda e: entry_day(e['date']))
    totals = OrderedDict()
    for entry in ordered:
        key = bucket_key(entry_day(entry['date']), view, week_starts_on)
        totals[key] = totals.get(key, 0) + entry[field]
    return [{'date': key, field: total} for key, total in totals.items()]


def summarize(entries: List[Dict], field: str, whole_numbers: bool) -> Dict:
    """Total of ``field`` and its average per distinct logged day."""
    if not entries:
        return {'total': 0, 'dailyAverage': 0}
    total = sum(entry[field] for entry in entries)
    days = len({entry_day(entry['date']) for entry in entries})
    average = total / max(days, 1)
    if whole_numbers:
        return {'total': int(total), 'dailyAverage': int(round(average))}
    return {'total': round(total, 1), 'dailyAverage': round(average, 1)}
