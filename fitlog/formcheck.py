"""
Form-check pipeline: receive an exercise video, shrink it with ffmpeg, send
it to Gemini and relay the model's feedback.

One request runs the stages in order:

    upload -> ffmpeg transcode -> base64 + generateContent -> JSON envelope

Both the stored upload and the transcoded copy are registered with
``temporary_files`` as soon as their paths are known, so they are removed on
every exit path, including unexpected exceptions.
"""

import asyncio
import base64
import logging
import os
import subprocess
import uuid
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List

import requests
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings


logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {
    'video/mp4': '.mp4',
    'video/quicktime': '.mov',
}
# room for multipart boundaries and part headers on top of the file itself
MULTIPART_OVERHEAD = 64 * 1024
CHUNK_SIZE = 1024 * 1024
STDERR_TAIL = 2000

FORM_CHECK_PROMPT = """
You are an experienced strength coach reviewing an exercise video.
Watch the complete clip from start to finish before answering, then give
feedback covering:
1. Setup and starting position, and how cleanly each rep transitions
   between the lowering and pushing phases
2. Joint angles at the elbows, shoulders, hips and knees
3. Body alignment from head to heels
4. Tempo and control through each rep
5. Depth and range of motion
6. Core engagement and bracing
7. The most important corrections, in priority order
8. Safety concerns and any compensation patterns you notice
Be specific but concise, and refer to moments in the video where it helps.
"""


class FormCheckError(Exception):
    status_code = 500


class UploadRejected(FormCheckError):
    status_code = 400


class TranscoderBusy(FormCheckError):
    status_code = 429


class ConfigurationError(FormCheckError):
    pass


class TranscodeError(FormCheckError):
    pass


class AnalysisError(FormCheckError):
    pass


@dataclass
class StoredUpload:
    path: str
    mime_type: str
    size: int


@contextmanager
def temporary_files() -> Iterator[List[str]]:
    """Yield a list of paths that are deleted on exit, whatever happens."""
    paths: List[str] = []
    try:
        yield paths
    finally:
        for path in paths:
            try:
                if os.path.exists(path):
                    os.remove(path)
            except OSError as exc:
                logger.warning('Could not remove temp file %s: %s', path, exc)


# --- Upload receiver -------------------------------------------------------

def limit_request_body(request: Request, max_bytes: int,
                       message: str = 'Request body is too large') -> Request:
    """Wrap ``request`` so reading past ``max_bytes`` of body aborts."""
    received = 0

    async def receive():
        nonlocal received
        event = await request.receive()
        if event['type'] == 'http.request':
            received += len(event.get('body', b''))
            if received > max_bytes:
                raise UploadRejected(message)
        return event

    return Request(request.scope, receive)


def _too_large_message(max_bytes: int) -> str:
    return f'Video is too large. Maximum size is {max_bytes / (1024 * 1024):g}MB.'


async def receive_upload(request: Request, settings: Settings, temp_files: List[str]) -> StoredUpload:
    """Store the ``video`` form field on disk after validating type and size."""
    body_cap = settings.max_upload_bytes + MULTIPART_OVERHEAD
    declared = request.headers.get('content-length')
    if declared and declared.isdigit() and int(declared) > body_cap:
        logger.warning('Rejected form-check upload: Content-Length %s over cap', declared)
        raise UploadRejected(_too_large_message(settings.max_upload_bytes))

    limited = limit_request_body(request, body_cap, _too_large_message(settings.max_upload_bytes))
    try:
        form = await limited.form()
    except StarletteHTTPException as exc:
        raise UploadRejected(f'Invalid upload: {exc.detail}') from exc

    try:
        upload = form.get('video')
        if not isinstance(upload, UploadFile):
            raise UploadRejected('No video file uploaded')
        mime_type = (upload.content_type or '').split(';')[0].strip().lower()
        if mime_type not in ALLOWED_MIME_TYPES:
            logger.warning('Rejected form-check upload with content type %r', upload.content_type)
            raise UploadRejected('Invalid file type. Only MP4 and MOV videos are allowed.')

        os.makedirs(settings.upload_dir, exist_ok=True)
        path = os.path.join(settings.upload_dir, uuid.uuid4().hex + ALLOWED_MIME_TYPES[mime_type])
        temp_files.append(path)
        size = 0
        with open(path, 'wb') as out:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > settings.max_upload_bytes:
                    raise UploadRejected(_too_large_message(settings.max_upload_bytes))
                out.write(chunk)
        if size == 0:
            raise UploadRejected('Uploaded video is empty')
    finally:
        await form.close()

    logger.info('Stored form-check upload %s (%s, %d bytes)', path, mime_type, size)
    return StoredUpload(path=path, mime_type=mime_type, size=size)


# --- Video transcoder ------------------------------------------------------

class TranscodeLimiter:
    """Caps how many ffmpeg processes run at once; extra requests get a 429."""

    def __init__(self, slots: int):
        self.slots = max(1, slots)
        self._semaphore = asyncio.Semaphore(self.slots)

    @asynccontextmanager
    async def slot(self):
        if self._semaphore.locked():
            raise TranscoderBusy(
                'The server is busy processing other videos. Please try again shortly.'
            )
        async with self._semaphore:
            yield


def compressed_path(source: str) -> str:
    return f'{source}_compressed.mp4'


def transcode_command(settings: Settings, source: str, output: str) -> List[str]:
    return [
        settings.ffmpeg_binary,
        '-i', source,
        '-vf', 'scale=480:-2',
        '-c:v', 'libx264',
        '-crf', '28',
        '-preset', 'veryfast',
        '-movflags', '+faststart',
        '-pix_fmt', 'yuv420p',
        '-t', str(settings.max_clip_seconds),
        '-y',
        output,
    ]


async def transcode(source: str, output: str, settings: Settings) -> str:
    """Re-encode ``source`` into a small MP4 at ``output``."""
    cmd = transcode_command(settings, source, output)
    logger.info('Starting video compression: %s', ' '.join(cmd))
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE
        )
    except FileNotFoundError as exc:
        raise TranscodeError(
            f'Video compression tool {settings.ffmpeg_binary!r} is not installed'
        ) from exc
    _, stderr = await proc.communicate()
    if proc.returncode != 0:
        error_output = stderr.decode('utf-8', errors='replace').strip()
        logger.error('ffmpeg exited with code %s: %s', proc.returncode, error_output)
        raise TranscodeError(f'Failed to compress video: {error_output[-STDERR_TAIL:]}')
    logger.info('Compressed video written to %s', output)
    return output


# --- Analysis requester ----------------------------------------------------

def ensure_api_key(settings: Settings) -> str:
    if settings.gemini_api_key:
        return settings.gemini_api_key
    if settings.deployment:
        message = (
            'GEMINI_API_KEY is not configured for this deployment. '
            'Add it to the deployment secrets and redeploy.'
        )
    else:
        message = (
            'GEMINI_API_KEY is not set. Add it to your .env file or '
            'environment and restart the server.'
        )
    logger.error(message)
    raise ConfigurationError(message)


def build_request_body(video_b64: str, mime_type: str) -> Dict:
    return {
        'contents': [{
            'parts': [
                {'text': FORM_CHECK_PROMPT},
                {'inlineData': {'mimeType': mime_type, 'data': video_b64}},
            ],
        }],
    }


def _error_detail(response: requests.Response) -> str:
    try:
        return response.json()['error']['message']
    except (ValueError, KeyError, TypeError):
        return response.text[:500] or response.reason


def extract_text(data: Dict) -> str:
    """Join the text parts of the first candidate of a generateContent reply."""
    candidates = data.get('candidates') or []
    if not candidates:
        reason = (data.get('promptFeedback') or {}).get('blockReason')
        if reason:
            raise AnalysisError(f'Gemini blocked the request: {reason}')
        return ''
    parts = (candidates[0].get('content') or {}).get('parts') or []
    return ''.join(part.get('text', '') for part in parts).strip()


def request_analysis(video_path: str, settings: Settings, mime_type: str = 'video/mp4') -> str:
    """Send the video to Gemini and return its feedback text."""
    api_key = ensure_api_key(settings)
    with open(video_path, 'rb') as f:
        video_b64 = base64.b64encode(f.read()).decode('ascii')
    url = f'{settings.gemini_api_base}/models/{settings.gemini_model}:generateContent'
    logger.info('Requesting analysis from %s (%d base64 bytes)', settings.gemini_model, len(video_b64))
    try:
        response = requests.post(
            url,
            headers={
                'x-goog-api-key': api_key,
                'Content-Type': 'application/json',
            },
            json=build_request_body(video_b64, mime_type),
            timeout=settings.gemini_timeout,
        )
    except requests.RequestException as exc:
        raise AnalysisError(f'Gemini request failed: {exc}') from exc
    if not response.ok:
        raise AnalysisError(
            f'Gemini returned HTTP {response.status_code}: {_error_detail(response)}'
        )
    try:
        data = response.json()
    except ValueError as exc:
        raise AnalysisError('Gemini returned a response that is not JSON') from exc
    text = extract_text(data)
    if not text:
        raise AnalysisError('Failed to analyze video: No response from Gemini.')
    return text


# --- Pipeline and response relay -------------------------------------------

async def run_form_check(request: Request, settings: Settings, limiter: TranscodeLimiter) -> str:
    with temporary_files() as temp_files:
        upload = await receive_upload(request, settings, temp_files)
        ensure_api_key(settings)
        output = compressed_path(upload.path)
        temp_files.append(output)
        async with limiter.slot():
            await transcode(upload.path, output, settings)
        return await run_in_threadpool(request_analysis, output, settings)


def success_response(analysis: str) -> Dict:
    return {'success': True, 'analysis': analysis}


def error_response(exc: Exception) -> JSONResponse:
    """Render a pipeline failure as the ``{success, message, error}`` envelope."""
    if isinstance(exc, FormCheckError) and exc.status_code < 500:
        status_code = exc.status_code
        message = str(exc)
    else:
        status_code = 500
        message = f'Failed to process form check: {exc}'
    return JSONResponse(
        status_code=status_code,
        content={'success': False, 'message': message, 'error': str(exc)},
    )
