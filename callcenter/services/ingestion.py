"""Audio reachability and size validation, run before any model spend."""
import time
from dataclasses import dataclass
from typing import Optional

import requests
from flask import current_app

from ..errors import AudioUnreachable, PayloadTooLarge
from .storage import head_audio, MB


@dataclass
class AudioCheck:
    url: str
    size_mb: Optional[float]
    content_type: Optional[str]


def check_audio(url: str, timeout: float = None, max_mb: float = None, attempts: int = 2) -> AudioCheck:
    """HEAD the audio with a bounded timeout, retrying once on failure.

    Raises AudioUnreachable when every attempt fails and PayloadTooLarge when
    the declared content-length exceeds max_mb.
    """
    if timeout is None:
        timeout = float(current_app.config.get('AUDIO_HEAD_TIMEOUT', 10))
    if max_mb is None:
        max_mb = float(current_app.config.get('AUDIO_SOFT_MAX_MB', 100))

    size = content_type = None
    for attempt in range(1, attempts + 1):
        try:
            size, content_type = head_audio(url, timeout=timeout)
            break
        except (requests.exceptions.RequestException, AudioUnreachable) as e:
            current_app.logger.warning('Audio HEAD attempt %s/%s failed: %s', attempt, attempts, e)
            if attempt == attempts:
                if isinstance(e, AudioUnreachable):
                    raise
                raise AudioUnreachable(f"Audio URL not accessible: {e}") from e
            time.sleep(2)

    size_mb = round(size / MB, 2) if size else None
    if size_mb is not None:
        current_app.logger.info('Audio URL is accessible, size: %sMB', size_mb)
        if size_mb > max_mb:
            raise PayloadTooLarge(size_mb, max_mb)
    else:
        current_app.logger.info('Audio URL is accessible (size unknown)')
    return AudioCheck(url=url, size_mb=size_mb, content_type=content_type)
