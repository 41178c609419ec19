"""Transcription stage: audio URL -> formatted speaker-turn transcript.

Models are tried in a fixed order inside each attempt; the whole chain is
retried with exponential backoff. Conditions that make retrying pointless
(file too large, unsupported format, no speech) come back as a descriptive
sentinel string instead of an exception so the pipeline can finish the call.
"""
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Sequence, Tuple

import requests
from flask import current_app

from ..errors import AudioUnreachable, OpenAIError, PayloadTooLarge, TranscriptionFailed
from .batch import run_bounded
from .openai_wrap import transcribe_file
from .speakers import attribute_speakers, sentinel, is_sentinel
from .speaking_metrics import transcript_stats
from .storage import MB, download_bytes, filename_from_url, head_audio

# keep the model from inventing noise/onomatopoeia tags
VERBATIM_PROMPT = (
    "Transcribe en español de forma literal (verbatim), sin normalizar números ni nombres. "
    "No incluyas etiquetas como [ruido], [música], [risas] ni [inaudible]; si una parte no se "
    "entiende, deja un espacio o continuidad natural sin insertar marcas."
)

AUDIO_FORMATS = (
    ('webm', 'WEBM'), ('mpeg', 'MP3'), ('mp3', 'MP3'), ('wav', 'WAV'),
    ('mp4', 'MP4/M4A'), ('m4a', 'MP4/M4A'), ('flac', 'FLAC'), ('ogg', 'OGG'),
)


@dataclass
class AudioRequest:
    audio: bytes
    filename: str
    content_type: str
    language: str = 'es'


@dataclass
class ProviderResult:
    provider: str
    value: Any


def attempt_providers(providers: Sequence[Tuple[str, Callable[[Any], Any]]], request) -> ProviderResult:
    """Try providers in order; return the first success and who produced it.

    Re-raises the last provider's error when all of them fail.
    """
    last_error = None
    for name, call in providers:
        try:
            current_app.logger.info('Trying %s...', name)
            value = call(request)
        except OpenAIError as e:
            current_app.logger.warning('%s failed: %s', name, e)
            last_error = e
            continue
        current_app.logger.info('Success with %s', name)
        return ProviderResult(provider=name, value=value)
    if last_error is None:
        raise TranscriptionFailed('No transcription providers configured')
    raise last_error


def _model_provider(model: str, verbose: bool):
    def call(req: AudioRequest):
        return transcribe_file(
            model, req.audio, req.filename, req.content_type,
            language=req.language, verbose=verbose,
            prompt=VERBATIM_PROMPT if verbose else None,
        )
    return call


def model_providers() -> List[Tuple[str, Callable]]:
    """Configured model chain; the last model is asked for segment timestamps."""
    models = [m.strip() for m in current_app.config.get('TRANSCRIPTION_MODELS', []) if m.strip()]
    return [(m, _model_provider(m, verbose=(i == len(models) - 1))) for i, m in enumerate(models)]


def _too_large(size_mb, max_mb) -> str:
    return sentinel(f"archivo demasiado grande ({size_mb if size_mb is not None else '?'}MB). "
                    f"Máximo permitido: {max_mb:g}MB")


def detect_format(content_type: str) -> str:
    ct = (content_type or '').lower()
    for needle, label in AUDIO_FORMATS:
        if needle in ct:
            return label
    return 'Unknown'


def transcribe_with_retry(request: AudioRequest, providers=None) -> ProviderResult:
    """Run the provider chain with the stage's retry/backoff envelope.

    Raises PayloadTooLarge on a 413 (never retried) and TranscriptionFailed
    once every attempt is exhausted.
    """
    providers = providers if providers is not None else model_providers()
    max_attempts = int(current_app.config.get('TRANSCRIPTION_MAX_ATTEMPTS', 3))

    for attempt in range(1, max_attempts + 1):
        current_app.logger.info('Transcription attempt %s/%s', attempt, max_attempts)
        try:
            return attempt_providers(providers, request)
        except OpenAIError as e:
            current_app.logger.error('Attempt %s failed: %s', attempt, e)
            if e.status_code == 413 or '413' in str(e):
                raise PayloadTooLarge(round(len(request.audio) / MB, 2),
                                      current_app.config.get('AUDIO_MAX_MB', 25)) from e
            if attempt == max_attempts:
                raise TranscriptionFailed(f'Transcription failed: {e}') from e
            if e.status_code == 429:
                current_app.logger.info('Rate limited, waiting longer...')
                time.sleep(min(45, 10 * 2 ** attempt))
            delay = 3 * 2 ** (attempt - 1) + random.uniform(0, 2)
            time.sleep(min(30, delay))


def _failure_sentinel(err: TranscriptionFailed):
    cause = err.__cause__
    detail = f"{err} {getattr(cause, 'body', '') or ''}"
    if 'Invalid file format' in detail:
        return sentinel('formato de archivo no compatible con el modelo de transcripción')
    if 'No speech found' in detail:
        return sentinel('no se detectó habla clara en el audio')
    return None


def transcribe_audio(audio_url: str) -> str:
    """Transcribe and format one recording.

    Returns the `[m:ss] Role: text` transcript, or a sentinel beginning with
    "No hay transcripción disponible". Raises TranscriptionFailed when the
    models keep failing.
    """
    max_mb = float(current_app.config.get('AUDIO_MAX_MB', 25))
    timeout = float(current_app.config.get('TRANSCRIPTION_HEAD_TIMEOUT', 15))

    # HEAD for size and MIME without downloading the file
    size = content_type = None
    try:
        size, content_type = head_audio(audio_url, timeout=timeout)
    except (requests.exceptions.RequestException, AudioUnreachable) as e:
        current_app.logger.warning('HEAD before transcription failed: %s', e)
    size_mb = round(size / MB, 2) if size else None
    if size_mb and size_mb > max_mb:
        return _too_large(size_mb, max_mb)

    try:
        audio = download_bytes(audio_url, max_bytes=int(max_mb * MB))
    except PayloadTooLarge as e:
        return _too_large(e.size_mb, max_mb)
    except requests.exceptions.Timeout:
        return sentinel('tiempo de descarga agotado (archivo muy grande o conexión lenta)')
    except (requests.exceptions.RequestException, AudioUnreachable) as e:
        raise TranscriptionFailed(f'Transcription failed: {e}') from e

    content_type = content_type or 'audio/mpeg'
    request = AudioRequest(
        audio=audio,
        filename=filename_from_url(audio_url),
        content_type=content_type,
        language=current_app.config.get('TRANSCRIPTION_LANGUAGE', 'es'),
    )
    current_app.logger.info('Stream ready: name=%s type=%s size=%sMB format=%s',
                            request.filename, content_type, size_mb or round(len(audio) / MB, 2),
                            detect_format(content_type))

    try:
        result = transcribe_with_retry(request)
    except PayloadTooLarge as e:
        return _too_large(e.size_mb, max_mb)
    except TranscriptionFailed as e:
        known = _failure_sentinel(e)
        if known:
            return known
        raise

    formatted = attribute_speakers(result.value)
    if not is_sentinel(formatted):
        stats = transcript_stats(formatted)
        current_app.logger.info('Transcription completed with %s: %s', result.provider, stats)
    return formatted


def transcribe_audio_batch(audio_urls, concurrency=None):
    """Transcribe many recordings with a bounded worker pool.

    Returns one {url, ok, text | error} dict per input, in input order.
    """
    if concurrency is None:
        concurrency = current_app.config.get('BATCH_CONCURRENCY', 50)
    app = current_app._get_current_object()

    def one(url):
        with app.app_context():
            return transcribe_audio(url)

    results = run_bounded(audio_urls, one, concurrency=concurrency, key='url')
    out = []
    for r in results:
        if r['ok']:
            out.append({'url': r['url'], 'ok': True, 'text': r['value']})
        else:
            out.append({'url': r['url'], 'ok': False, 'error': r['error']})
    return out
