"""
Health-store sync support for the mobile client.

The native bridge lives on the device; the server keeps the per-user
auto-sync preference and converts logged entries into the samples the
bridge writes (active calories for pushups, walking distance in metres).
"""

import datetime
from typing import Dict, List

from .db import get_db_connection

AUTO_SYNC_KEY = 'health_auto_sync'

CALORIES_PER_PUSHUP = 0.4
SECONDS_PER_PUSHUP = 3
METERS_PER_MILE = 1609.34
MINUTES_PER_MILE = 20


class HealthSyncPreferences:
    """Per-user auto-sync flag stored in the ``preferences`` table."""

    def __init__(self, database_path: str):
        self.database_path = database_path

    def get_auto_sync(self, user_id: int) -> bool:
        conn = get_db_connection(self.database_path)
        row = conn.execute(
            'SELECT value FROM preferences WHERE user_id=? AND key=?', (user_id, AUTO_SYNC_KEY)
        ).fetchone()
        conn.close()
        return row is not None and row['value'] == 'true'

    def set_auto_sync(self, user_id: int, enabled: bool) -> bool:
        conn = get_db_connection(self.database_path)
        with conn:
            conn.execute(
                'INSERT INTO preferences (user_id, key, value) VALUES (?, ?, ?) '
                'ON CONFLICT (user_id, key) DO UPDATE SET value=excluded.value',
                (user_id, AUTO_SYNC_KEY, 'true' if enabled else 'false'),
            )
        conn.close()
        return enabled


def _start_of(date_str: str) -> datetime.datetime:
    if date_str.endswith('Z'):
        date_str = date_str[:-1] + '+00:00'
    if len(date_str) == 10:
        return datetime.datetime.combine(datetime.date.fromisoformat(date_str), datetime.time())
    return datetime.datetime.fromisoformat(date_str)


def _end_of(start: datetime.datetime, seconds: float) -> datetime.datetime:
    try:
        return start + datetime.timedelta(seconds=seconds)
    except OverflowError:
        return datetime.datetime.max.replace(tzinfo=start.tzinfo)


def pushup_sample(entry: Dict) -> Dict:
    start = _start_of(entry['date'])
    end = _end_of(start, entry['count'] * SECONDS_PER_PUSHUP)
    return {
        'dataType': 'calories',
        'value': round(entry['count'] * CALORIES_PER_PUSHUP),
        'startDate': start.isoformat(),
        'endDate': end.isoformat(),
    }


def walk_sample(entry: Dict) -> Dict:
    start = _start_of(entry['date'])
    end = _end_of(start, entry['miles'] * MINUTES_PER_MILE * 60)
    return {
        'dataType': 'distance',
        'value': entry['miles'] * METERS_PER_MILE,
        'startDate': start.isoformat(),
        'endDate': end.isoformat(),
    }


def samples_for(pushups: List[Dict], walks: List[Dict]) -> List[Dict]:
    """All samples for a user's entries, oldest first."""
    samples = [pushup_sample(e) for e in pushups] + [walk_sample(e) for e in walks]
    return sorted(samples, key=lambda s: s['startDate'])
