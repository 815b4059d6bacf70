"""
Entry store for logged pushups and walks.

Both kinds share one shape: an owner, a positive numeric value and a date.
Every query filters on ``user_id`` so one user can never read or delete
another user's rows.
"""

import datetime
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .db import get_db_connection


logger = logging.getLogger(__name__)


class EntryValidationError(ValueError):
    pass


@dataclass(frozen=True)
class EntryKind:
    table: str
    field: str
    whole_numbers: bool
    label: str
    max_value: float


PUSHUPS = EntryKind(table='pushups', field='count', whole_numbers=True, label='pushup',
                    max_value=100000)
WALKS = EntryKind(table='walks', field='miles', whole_numbers=False, label='walk',
                  max_value=1000)

KINDS = {kind.table: kind for kind in (PUSHUPS, WALKS)}


def parse_value(kind: EntryKind, raw: Any):
    """Coerce a submitted count/miles value, rejecting anything not > 0."""
    error = EntryValidationError(f'Invalid {kind.field} value')
    if raw is None or isinstance(raw, bool):
        raise error
    if isinstance(raw, str):
        raw = raw.strip()
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise error from None
    if not math.isfinite(value) or value <= 0 or value > kind.max_value:
        raise error
    if kind.whole_numbers:
        if not value.is_integer():
            raise error
        return int(value)
    return value


def parse_date(raw: Optional[str]) -> str:
    """Normalise a submitted date; defaults to the current server time."""
    if raw is None or raw == '':
        return datetime.datetime.now().isoformat(timespec='seconds')
    if not isinstance(raw, str):
        raise EntryValidationError('Invalid date value')
    candidate = raw.strip()
    if candidate.endswith('Z'):
        candidate = candidate[:-1] + '+00:00'
    try:
        if len(candidate) == 10:
            datetime.date.fromisoformat(candidate)
        else:
            datetime.datetime.fromisoformat(candidate)
    except ValueError:
        raise EntryValidationError('Invalid date value') from None
    return raw.strip()


def _row_to_entry(kind: EntryKind, row) -> Dict:
    return {
        'id': row['id'],
        'userId': row['user_id'],
        kind.field: row[kind.field],
        'date': row['date'],
    }


def list_entries(database_path: str, kind: EntryKind, user_id: int) -> List[Dict]:
    conn = get_db_connection(database_path)
    rows = conn.execute(
        f'SELECT id, user_id, {kind.field}, date FROM {kind.table} '
        'WHERE user_id=? ORDER BY date DESC, id DESC',
        (user_id,),
    ).fetchall()
    conn.close()
    return [_row_to_entry(kind, row) for row in rows]


def create_entry(
    database_path: str, kind: EntryKind, user_id: int, raw_value: Any, raw_date: Optional[str] = None
) -> Dict:
    """Validate and insert one entry, returning the stored row."""
    value = parse_value(kind, raw_value)
    date_str = parse_date(raw_date)
    conn = get_db_connection(database_path)
    with conn:
        cur = conn.execute(
            f'INSERT INTO {kind.table} (user_id, {kind.field}, date) VALUES (?, ?, ?)',
            (user_id, value, date_str),
        )
        new_id = cur.lastrowid
    row = conn.execute(
        f'SELECT id, user_id, {kind.field}, date FROM {kind.table} WHERE id=?', (new_id,)
    ).fetchone()
    conn.close()
    logger.info('User %s logged %s %s=%s on %s', user_id, kind.label, kind.field, value, date_str)
    return _row_to_entry(kind, row)


def delete_entry(database_path: str, kind: EntryKind, user_id: int, entry_id: int) -> Dict:
    """Delete an entry owned by ``user_id``; other ids are a silent no-op."""
    conn = get_db_connection(database_path)
    with conn:
        cur = conn.execute(
            f'DELETE FROM {kind.table} WHERE id=? AND user_id=?', (entry_id, user_id)
        )
    conn.close()
    if cur.rowcount == 0:
        logger.info('No %s entry %s for user %s; nothing deleted', kind.label, entry_id, user_id)
    return {'success': True}
