"""
Runtime configuration for the fitlog server.

Values come from the process environment. A ``.env`` file in the project
root is loaded first so local development does not need exported variables;
deployed environments supply the same names as secrets.
"""

import os
import secrets
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


_project_root = Path(__file__).parent.parent
_env_path = _project_root / '.env'

DEFAULT_DATABASE_URL = 'sqlite:///' + os.path.join(os.path.dirname(__file__), 'fitlog.db')
DEFAULT_GEMINI_API_BASE = 'https://generativelanguage.googleapis.com/v1beta'
DEFAULT_GEMINI_MODEL = 'gemini-2.0-flash'
DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024


def _env_bool(value: Optional[str]) -> bool:
    return (value or '').strip().lower() in ('1', 'true', 'yes', 'on')


def database_path_from_url(url: str) -> str:
    """Strip an optional ``sqlite:///`` scheme and return the file path."""
    if url.startswith('sqlite:///'):
        return url[len('sqlite:///'):]
    if '://' in url:
        raise ValueError(f'Unsupported DATABASE_URL {url!r}; only sqlite is supported')
    return url


@dataclass
class Settings:
    database_path: str = database_path_from_url(DEFAULT_DATABASE_URL)
    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_GEMINI_MODEL
    gemini_api_base: str = DEFAULT_GEMINI_API_BASE
    gemini_timeout: float = 120.0
    session_secret: str = field(default_factory=lambda: secrets.token_hex(32))
    upload_dir: str = os.path.join(tempfile.gettempdir(), 'fitlog-uploads')
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    max_clip_seconds: int = 60
    ffmpeg_binary: str = 'ffmpeg'
    max_concurrent_transcodes: int = field(default_factory=lambda: os.cpu_count() or 1)
    deployment: bool = False
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, env_file: Optional[Path] = _env_path) -> 'Settings':
        """Build settings from ``os.environ`` after loading ``.env``."""
        if env_file is not None:
            load_dotenv(env_file)
        env = os.environ
        defaults = cls()
        return cls(
            database_path=database_path_from_url(env.get('DATABASE_URL', DEFAULT_DATABASE_URL)),
            gemini_api_key=env.get('GEMINI_API_KEY') or None,
            gemini_model=env.get('GEMINI_MODEL', DEFAULT_GEMINI_MODEL),
            gemini_api_base=env.get('GEMINI_API_BASE', DEFAULT_GEMINI_API_BASE).rstrip('/'),
            gemini_timeout=float(env.get('GEMINI_TIMEOUT', defaults.gemini_timeout)),
            session_secret=env.get('SESSION_SECRET') or defaults.session_secret,
            upload_dir=env.get('UPLOAD_DIR', defaults.upload_dir),
            max_upload_bytes=int(env.get('FORM_CHECK_MAX_BYTES', DEFAULT_MAX_UPLOAD_BYTES)),
            max_clip_seconds=int(env.get('FORM_CHECK_MAX_SECONDS', defaults.max_clip_seconds)),
            ffmpeg_binary=env.get('FFMPEG_BINARY', defaults.ffmpeg_binary),
            max_concurrent_transcodes=int(
                env.get('MAX_CONCURRENT_TRANSCODES', defaults.max_concurrent_transcodes)
            ),
            # Replit sets REPLIT_DEPLOYMENT inside published deployments
            deployment=_env_bool(env.get('FITLOG_DEPLOYMENT')) or bool(env.get('REPLIT_DEPLOYMENT')),
            log_level=env.get('LOG_LEVEL', defaults.log_level).upper(),
        )
