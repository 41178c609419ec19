"""Transcribe a list of audio URLs (one per line) with a bounded worker pool.

Usage:
  python scripts/batch_transcribe.py urls.txt [--concurrency 50] [--out results.json]
"""
import argparse
import json
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from callcenter import create_app
from callcenter.services.batch import clamp_concurrency
from callcenter.services.transcription import transcribe_audio_batch


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument('urls_file')
    parser.add_argument('--concurrency', type=int)
    parser.add_argument('--out')
    args = parser.parse_args(argv)

    with open(args.urls_file, encoding='utf-8') as f:
        urls = [ln.strip() for ln in f if ln.strip() and not ln.startswith('#')]

    app = create_app({'RQ_SYNC': True})
    with app.app_context():
        concurrency = clamp_concurrency(args.concurrency or app.config.get('BATCH_CONCURRENCY'))
        results = transcribe_audio_batch(urls, concurrency=concurrency)

    failed = [r for r in results if not r['ok']]
    print(f'{len(results) - len(failed)}/{len(results)} transcribed', file=sys.stderr)
    payload = json.dumps(results, ensure_ascii=False, indent=2)
    if args.out:
        with open(args.out, 'w', encoding='utf-8') as f:
            f.write(payload)
    else:
        print(payload)
    return 1 if failed else 0


if __name__ == '__main__':
    sys.exit(main())
