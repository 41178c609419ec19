"""Process one call synchronously (no RQ), printing the job result.

Usage:
  python scripts/process_call.py CALL_ID [--audio-url URL] [--behavior ID ...]
"""
import argparse
import json
import os
import sys

# ensure project root is on sys.path so `import callcenter` works when running this script
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from callcenter import create_app
from callcenter.errors import PipelineError
from callcenter.jobs.process_call import run_process_call


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument('call_id', type=int)
    parser.add_argument('--audio-url')
    parser.add_argument('--summary-prompt')
    parser.add_argument('--feedback-prompt')
    parser.add_argument('--behavior', type=int, action='append', dest='behaviors')
    args = parser.parse_args(argv)

    app = create_app({'RQ_SYNC': True})
    with app.app_context():
        try:
            result = run_process_call(
                args.call_id,
                audio_url=args.audio_url,
                summary_prompt=args.summary_prompt,
                feedback_prompt=args.feedback_prompt,
                selected_behavior_ids=args.behaviors,
            )
        except PipelineError as e:
            print(f'call {args.call_id} failed: {e}', file=sys.stderr)
            return 1
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


if __name__ == '__main__':
    sys.exit(main())
