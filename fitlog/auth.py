"""User accounts and session-cookie authentication."""

import logging
import sqlite3
from typing import Dict, Optional

from fastapi import HTTPException, Request
from werkzeug.security import check_password_hash, generate_password_hash

from .db import get_db_connection


logger = logging.getLogger(__name__)

SESSION_USER_KEY = 'user_id'


class UsernameTaken(Exception):
    pass


def _public(row: sqlite3.Row) -> Dict:
    return {'id': row['id'], 'username': row['username']}


def create_user(database_path: str, username: str, password: str) -> Dict:
    """Insert a new user and return its public fields."""
    password_hash = generate_password_hash(password)
    conn = get_db_connection(database_path)
    try:
        with conn:
            cur = conn.execute(
                'INSERT INTO users (username, password_hash) VALUES (?, ?)',
                (username, password_hash),
            )
    except sqlite3.IntegrityError as exc:
        raise UsernameTaken(username) from exc
    finally:
        conn.close()
    logger.info('Registered user %s (id=%s)', username, cur.lastrowid)
    return {'id': cur.lastrowid, 'username': username}


def authenticate(database_path: str, username: str, password: str) -> Optional[Dict]:
    """Return the user when the password matches, otherwise None."""
    conn = get_db_connection(database_path)
    row = conn.execute(
        'SELECT id, username, password_hash FROM users WHERE username=?', (username,)
    ).fetchone()
    conn.close()
    if row is None or not check_password_hash(row['password_hash'], password):
        return None
    return _public(row)


def get_user(database_path: str, user_id: int) -> Optional[Dict]:
    conn = get_db_connection(database_path)
    row = conn.execute('SELECT id, username FROM users WHERE id=?', (user_id,)).fetchone()
    conn.close()
    return _public(row) if row else None


def login_session(request: Request, user: Dict) -> None:
    request.session.clear()
    request.session[SESSION_USER_KEY] = user['id']


def logout_session(request: Request) -> None:
    request.session.clear()


def current_user(request: Request) -> Dict:
    """FastAPI dependency resolving the logged-in user or failing with 401."""
    user_id = request.session.get(SESSION_USER_KEY)
    if user_id is None:
        raise HTTPException(status_code=401, detail='Not logged in')
    user = get_user(request.app.state.settings.database_path, user_id)
    if user is None:
        # the cookie outlived its user row
        request.session.clear()
        raise HTTPException(status_code=401, detail='Not logged in')
    return user
