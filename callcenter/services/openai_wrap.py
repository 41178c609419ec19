"""Thin wrappers over the OpenAI HTTP API.

We avoid depending on the `openai` Python SDK and call the REST endpoints
directly with `requests`, so every failure surfaces as an `OpenAIError`
carrying the HTTP status the pipeline needs for its retry decisions
(413 = too large, 429 = rate limited, 5xx/None = transient).
"""

from flask import current_app
import requests
import json
import random
import time
from typing import Dict, Any, List, Optional

from ..errors import OpenAIError


def _api_key() -> str:
    key = current_app.config.get('OPENAI_API_KEY')
    if not key:
        raise OpenAIError('OpenAI API key not configured')
    return key


def _url(path: str) -> str:
    base = current_app.config.get('OPENAI_BASE_URL') or 'https://api.openai.com/v1'
    return base.rstrip('/') + path


def _post(path: str, timeout: float = 60, **kwargs) -> Dict[str, Any]:
    """Single POST; raise OpenAIError on network failure or non-2xx."""
    headers = {'Authorization': f'Bearer {_api_key()}'}
    try:
        r = requests.post(_url(path), headers=headers, timeout=timeout, **kwargs)
    except requests.exceptions.RequestException as e:
        raise OpenAIError(f'OpenAI request to {path} failed: {e}') from e
    if r.status_code >= 400:
        body = (r.text or '')[:2000]
        err = OpenAIError(f'OpenAI {path} returned {r.status_code}', status_code=r.status_code, body=body)
        err.retry_after = r.headers.get('Retry-After')
        raise err
    try:
        return r.json()
    except ValueError as e:
        raise OpenAIError(f'OpenAI {path} returned invalid JSON', status_code=r.status_code) from e


def _post_with_retry(path: str, timeout: float = 30, **kwargs) -> Dict[str, Any]:
    """POST with retry for rate limits / transient errors.

    - respect Retry-After header when present
    - use exponential backoff with small jitter
    - do not retry insufficient_quota or other 4xx
    """
    max_attempts = int(current_app.config.get('OPENAI_MAX_ATTEMPTS', 3))
    backoff = 1.0
    for attempt in range(1, max_attempts + 1):
        try:
            return _post(path, timeout=timeout, **kwargs)
        except OpenAIError as e:
            if 'insufficient_quota' in (e.body or ''):
                current_app.logger.error('OpenAI 429 indicates insufficient quota; body=%s', (e.body or '')[:500])
                raise
            if not e.retryable or attempt == max_attempts:
                raise
            wait = backoff
            ra = getattr(e, 'retry_after', None)
            if ra:
                try:
                    wait = float(ra)
                except ValueError:
                    # Retry-After may be an HTTP-date; keep the backoff
                    wait = backoff
            current_app.logger.warning(
                'OpenAI %s failed with %s, attempt %s/%s, retrying in %ss',
                path, e.status_code, attempt, max_attempts, wait,
            )
            time.sleep(wait + random.uniform(0, 0.5))
            backoff *= 2


def transcribe_file(model: str, audio_bytes: bytes, filename: str, content_type: str,
                    language: str = 'es', verbose: bool = False, prompt: Optional[str] = None,
                    timeout: float = 300) -> Dict[str, Any]:
    """One call to /audio/transcriptions. Retrying is left to the caller.

    With verbose=True the response is verbose_json with segment and word
    timestamps; otherwise the model returns plain {"text": ...}.
    """
    data = {'model': model, 'language': language}
    if verbose:
        data['response_format'] = 'verbose_json'
        data['timestamp_granularities[]'] = ['segment', 'word']
        data['temperature'] = '0'
    if prompt:
        data['prompt'] = prompt
    files = {'file': (filename, audio_bytes, content_type)}
    return _post('/audio/transcriptions', timeout=timeout, data=data, files=files)


def chat_completion(messages: List[Dict[str, str]], temperature: float = 0.1, max_tokens: int = 500,
                    json_mode: bool = False, model: Optional[str] = None) -> str:
    body = {
        'model': model or current_app.config.get('CHAT_MODEL', 'gpt-4o-mini'),
        'messages': messages,
        'temperature': temperature,
        'max_tokens': max_tokens,
    }
    if json_mode:
        body['response_format'] = {'type': 'json_object'}
    jr = _post_with_retry('/chat/completions', json=body)
    try:
        return (jr['choices'][0]['message'].get('content') or '').strip()
    except (KeyError, IndexError, TypeError) as e:
        raise OpenAIError('Unexpected chat completion shape: ' + json.dumps(jr)[:500]) from e


def create_embedding(text: str, model: Optional[str] = None) -> List[float]:
    body = {
        'model': model or current_app.config.get('EMBEDDING_MODEL', 'text-embedding-3-small'),
        'input': text,
        'encoding_format': 'float',
    }
    jr = _post_with_retry('/embeddings', json=body)
    try:
        embedding = jr['data'][0]['embedding']
    except (KeyError, IndexError, TypeError) as e:
        raise OpenAIError('Invalid embedding response') from e
    if not isinstance(embedding, list):
        raise OpenAIError('Invalid embedding response')
    return embedding
