import os
import mimetypes
from urllib.parse import unquote, urlparse
from werkzeug.utils import secure_filename
from flask import current_app
import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
import requests

from ..errors import AudioUnreachable, PayloadTooLarge

MB = 1024 * 1024


def _ensure_local_dir():
    d = current_app.config['LOCAL_STORAGE_DIR']
    os.makedirs(d, exist_ok=True)
    return d


def _s3_client():
    # build boto3 client kwargs flexibly: endpoint_url may be empty in AWS-managed S3
    s3_kwargs = {}
    endpoint = current_app.config.get('S3_ENDPOINT')
    if endpoint:
        s3_kwargs['endpoint_url'] = endpoint
    region = current_app.config.get('S3_REGION')
    if region:
        s3_kwargs['region_name'] = region
    # prefer virtual-hosted style addressing; ensure sigv4
    s3_config = Config(signature_version='s3v4', s3={'addressing_style': 'virtual'})
    return boto3.client(
        's3',
        aws_access_key_id=current_app.config.get('S3_ACCESS_KEY'),
        aws_secret_access_key=current_app.config.get('S3_SECRET_KEY'),
        config=s3_config,
        **s3_kwargs,
    )


def _split_s3(url):
    bucket, key = url.replace('s3://', '', 1).split('/', 1)
    return bucket, key


def save_file(file_storage, prefix=""):
    """Persist an uploaded recording and return its storage location."""
    backend = current_app.config.get('STORAGE_BACKEND', 'local')
    filename = secure_filename(file_storage.filename)
    key = f"{prefix}/{filename}" if prefix else filename

    if backend == 's3':
        bucket = current_app.config.get('S3_BUCKET')
        # upload_fileobj expects a file-like object; use the underlying stream
        stream = getattr(file_storage, 'stream', file_storage)
        _s3_client().upload_fileobj(stream, bucket, key)
        return f"s3://{bucket}/{key}"

    d = _ensure_local_dir()
    path = os.path.join(d, key)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    file_storage.save(path)
    return f"file://{os.path.abspath(path)}"


def normalize_location(location: str) -> str:
    """Validate a stored audio location and return it stripped.

    The pipeline reads s3:// locations through the S3 API, so they are kept
    as-is rather than presigned.
    """
    if not location or location == 'undefined' or not location.strip():
        raise AudioUnreachable('Missing or invalid audio location')
    location = location.strip()
    if not location.startswith(('s3://', 'file://', 'http://', 'https://')):
        raise AudioUnreachable(f"Unsupported audio location scheme: {location[:40]}")
    return location


def resolve_audio_url(location: str) -> str:
    """Turn a stored location into a URL a browser can play.

    s3:// locations become presigned HTTPS URLs; file:// and http(s):// pass
    through unchanged.
    """
    location = normalize_location(location)
    if location.startswith('s3://'):
        bucket, key = _split_s3(location)
        return _s3_client().generate_presigned_url(
            'get_object',
            Params={'Bucket': bucket, 'Key': key},
            ExpiresIn=int(current_app.config.get('S3_PRESIGN_EXPIRES', 3600)),
        )
    return location


def filename_from_url(url: str) -> str:
    name = unquote(urlparse(url).path.rsplit('/', 1)[-1])
    return name or 'audio.mp3'


def head_audio(url: str, timeout: float = 10):
    """Return (size_bytes or None, content_type or None) without downloading.

    Raises AudioUnreachable when the resource does not answer with 2xx.
    """
    if url.startswith('file://'):
        path = url.replace('file://', '', 1)
        if not os.path.exists(path):
            raise AudioUnreachable(f"Audio file not found: {path}")
        return os.path.getsize(path), mimetypes.guess_type(path)[0]
    if url.startswith('s3://'):
        bucket, key = _split_s3(url)
        try:
            meta = _s3_client().head_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise AudioUnreachable(f"Audio object not accessible: {url}: {e}") from e
        return meta.get('ContentLength'), meta.get('ContentType')

    r = requests.head(url, timeout=timeout, allow_redirects=True,
                      headers={'User-Agent': 'Mozilla/5.0 (compatible; callcenter-pipeline/1.0)'})
    if not r.ok:
        raise AudioUnreachable(f"Audio URL not accessible: {r.status_code} {r.reason}")
    length = r.headers.get('content-length')
    size = int(length) if length and length.isdigit() else None
    return size, r.headers.get('content-type')


def download_bytes(url: str, max_bytes: int = None, timeout: float = 60) -> bytes:
    """Fetch audio bytes, aborting once more than max_bytes were streamed."""
    if url.startswith('s3://'):
        bucket, key = _split_s3(url)
        try:
            obj = _s3_client().get_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise AudioUnreachable(f"Could not read audio object: {e}") from e
        data = obj['Body'].read()
    elif url.startswith('file://'):
        path = url.replace('file://', '', 1)
        with open(path, 'rb') as f:
            data = f.read(max_bytes + 1) if max_bytes else f.read()
    elif url.startswith(('http://', 'https://')):
        chunks = []
        total = 0
        with requests.get(url, stream=True, timeout=timeout) as r:
            if not r.ok:
                raise AudioUnreachable(f"Could not open audio stream ({r.status_code})")
            for chunk in r.iter_content(chunk_size=256 * 1024):
                if not chunk:
                    continue
                total += len(chunk)
                if max_bytes and total > max_bytes:
                    raise PayloadTooLarge(round(total / MB, 2), round(max_bytes / MB, 2))
                chunks.append(chunk)
        data = b''.join(chunks)
    else:
        raise ValueError("Unsupported URL scheme")

    if max_bytes and len(data) > max_bytes:
        raise PayloadTooLarge(round(len(data) / MB, 2), round(max_bytes / MB, 2))
    return data
