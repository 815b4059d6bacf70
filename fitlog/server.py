"""
Personal Fitness Log Backend (FastAPI)
======================================

This module provides the FastAPI application behind the fitness log: a REST
API for recording pushup counts and walking distances, chart-ready
aggregations of those entries, the health-store auto-sync preference used by
the mobile app, and an AI form check that sends a short exercise video to
Google's Gemini model for technique feedback.

Data is persisted in SQLite. Users sign in with a username and password and
are tracked with a signed session cookie. To start the server:

    $ export GEMINI_API_KEY=...
    $ export SESSION_SECRET=...
    $ uvicorn fitlog.server:create_app --factory --host 0.0.0.0 --port 5000

The form check needs the ``ffmpeg`` binary on the PATH. If running behind a
reverse proxy, make sure it accepts request bodies of at least 50MB.
"""

import logging
import os
import sqlite3
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from . import formcheck
from .auth import (
    UsernameTaken,
    authenticate,
    create_user,
    current_user,
    login_session,
    logout_session,
)
from .charts import VIEWS, aggregate, summarize
from .config import Settings
from .db import init_db
from .entries import (
    PUSHUPS,
    WALKS,
    EntryKind,
    EntryValidationError,
    create_entry,
    delete_entry,
    list_entries,
)
from .healthsync import HealthSyncPreferences, samples_for


logger = logging.getLogger(__name__)


def configure_logging(level: str = 'INFO') -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )


def _credentials(body: Dict) -> tuple:
    username = body.get('username')
    password = body.get('password')
    if not isinstance(username, str) or not isinstance(password, str) \
            or not username.strip() or not password:
        raise HTTPException(status_code=400, detail='Username and password are required')
    return username.strip(), password


def _list(settings: Settings, kind: EntryKind, user: Dict) -> List[Dict]:
    try:
        return list_entries(settings.database_path, kind, user['id'])
    except sqlite3.Error:
        logger.exception('Error fetching %s entries', kind.label)
        raise HTTPException(status_code=500, detail=f'Failed to fetch {kind.label} entries')


def _create(settings: Settings, kind: EntryKind, user: Dict, body: Dict) -> Dict:
    try:
        return create_entry(
            settings.database_path, kind, user['id'], body.get(kind.field), body.get('date')
        )
    except EntryValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except sqlite3.Error:
        logger.exception('Error adding %s entry', kind.label)
        raise HTTPException(status_code=500, detail=f'Failed to add {kind.label} entry')


def _delete(settings: Settings, kind: EntryKind, user: Dict, entry_id: int) -> Dict:
    try:
        return delete_entry(settings.database_path, kind, user['id'], entry_id)
    except sqlite3.Error:
        logger.exception('Error deleting %s entry %s', kind.label, entry_id)
        raise HTTPException(status_code=500, detail=f'Failed to delete {kind.label} entry')


def _chart(settings: Settings, kind: EntryKind, user: Dict, view: str) -> List[Dict]:
    if view not in VIEWS:
        raise HTTPException(status_code=400, detail=f'View must be one of {", ".join(VIEWS)}')
    return aggregate(_list(settings, kind, user), kind.field, view)


def _stats(settings: Settings, kind: EntryKind, user: Dict) -> Dict:
    return summarize(_list(settings, kind, user), kind.field, kind.whole_numbers)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application; tests pass their own ``Settings``."""
    if settings is None:
        settings = Settings.from_env()
        configure_logging(settings.log_level)

    # Initialize DB once
    init_db(settings.database_path)
    os.makedirs(settings.upload_dir, exist_ok=True)

    app = FastAPI(title='fitlog')
    app.state.settings = settings
    app.state.transcode_limiter = formcheck.TranscodeLimiter(settings.max_concurrent_transcodes)
    app.state.health_preferences = HealthSyncPreferences(settings.database_path)

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        https_only=settings.deployment,
        same_site='lax',
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={'message': exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={'message': 'Invalid request body'})

    # Auth endpoints

    @app.post('/api/register')
    async def api_register(request: Request, body: Dict) -> Dict:
        username, password = _credentials(body)
        try:
            user = create_user(settings.database_path, username, password)
        except UsernameTaken:
            raise HTTPException(status_code=400, detail='Username already exists')
        login_session(request, user)
        return user

    @app.post('/api/login')
    async def api_login(request: Request, body: Dict) -> Dict:
        username, password = _credentials(body)
        user = authenticate(settings.database_path, username, password)
        if user is None:
            raise HTTPException(status_code=401, detail='Incorrect username or password')
        login_session(request, user)
        return user

    @app.post('/api/logout')
    async def api_logout(request: Request) -> Dict:
        logout_session(request)
        return {'success': True}

    @app.get('/api/user')
    async def api_user(user: Dict = Depends(current_user)) -> Dict:
        return user

    # Pushup endpoints

    @app.get('/api/pushups')
    async def api_get_pushups(user: Dict = Depends(current_user)) -> List[Dict]:
        return _list(settings, PUSHUPS, user)

    @app.post('/api/pushups')
    async def api_create_pushup(body: Dict, user: Dict = Depends(current_user)) -> Dict:
        return _create(settings, PUSHUPS, user, body)

    @app.delete('/api/pushups/{entry_id}')
    async def api_delete_pushup(entry_id: int, user: Dict = Depends(current_user)) -> Dict:
        return _delete(settings, PUSHUPS, user, entry_id)

    @app.get('/api/pushups/chart')
    async def api_pushup_chart(view: str = 'daily', user: Dict = Depends(current_user)) -> List[Dict]:
        return _chart(settings, PUSHUPS, user, view)

    @app.get('/api/pushups/stats')
    async def api_pushup_stats(user: Dict = Depends(current_user)) -> Dict:
        return _stats(settings, PUSHUPS, user)

    # Walk endpoints

    @app.get('/api/walks')
    async def api_get_walks(user: Dict = Depends(current_user)) -> List[Dict]:
        return _list(settings, WALKS, user)

    @app.post('/api/walks')
    async def api_create_walk(body: Dict, user: Dict = Depends(current_user)) -> Dict:
        return _create(settings, WALKS, user, body)

    @app.delete('/api/walks/{entry_id}')
    async def api_delete_walk(entry_id: int, user: Dict = Depends(current_user)) -> Dict:
        return _delete(settings, WALKS, user, entry_id)

    @app.get('/api/walks/chart')
    async def api_walk_chart(view: str = 'daily', user: Dict = Depends(current_user)) -> List[Dict]:
        return _chart(settings, WALKS, user, view)

    @app.get('/api/walks/stats')
    async def api_walk_stats(user: Dict = Depends(current_user)) -> Dict:
        return _stats(settings, WALKS, user)

    # Health sync endpoints

    @app.get('/api/health/auto-sync')
    async def api_get_auto_sync(request: Request, user: Dict = Depends(current_user)) -> Dict:
        return {'enabled': request.app.state.health_preferences.get_auto_sync(user['id'])}

    @app.put('/api/health/auto-sync')
    async def api_set_auto_sync(request: Request, body: Dict, user: Dict = Depends(current_user)) -> Dict:
        enabled = body.get('enabled')
        if not isinstance(enabled, bool):
            raise HTTPException(status_code=400, detail='enabled must be true or false')
        prefs = request.app.state.health_preferences
        return {'enabled': prefs.set_auto_sync(user['id'], enabled)}

    @app.get('/api/health/samples')
    async def api_health_samples(user: Dict = Depends(current_user)) -> List[Dict]:
        return samples_for(_list(settings, PUSHUPS, user), _list(settings, WALKS, user))

    # Form check endpoint

    @app.post('/api/form-check')
    async def api_form_check(request: Request, user: Dict = Depends(current_user)):
        logger.info('Processing form check upload for user %s', user['id'])
        try:
            analysis = await formcheck.run_form_check(
                request, settings, request.app.state.transcode_limiter
            )
        except formcheck.FormCheckError as exc:
            if exc.status_code >= 500:
                logger.error('Form check failed: %s', exc)
            return formcheck.error_response(exc)
        except Exception as exc:
            logger.exception('Unexpected error processing form check')
            return formcheck.error_response(exc)
        return formcheck.success_response(analysis)

    return app


def main() -> None:
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=os.environ.get('HOST', '0.0.0.0'),
        port=int(os.environ.get('PORT', 5000)),
    )


if __name__ == '__main__':
    main()
