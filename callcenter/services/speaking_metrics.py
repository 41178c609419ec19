# callcenter/services/speaking_metrics.py
import re

from .speakers import ADVISOR, CLIENT, THIRD_PARTY, SILENCE

SILENCE_LINE = re.compile(rf'{SILENCE}: (\d+) segundos')


def transcript_stats(transcript):
    """
    transcript: formatted `[m:ss] Role: text` lines
    return: dict (JSON-serializable) with per-role line counts and silences
    """
    lines = [ln for ln in (transcript or '').split('\n') if ln.strip()]
    by_role = {ADVISOR: 0, CLIENT: 0, THIRD_PARTY: 0}
    silences = 0
    silence_sec = 0

    for ln in lines:
        m = SILENCE_LINE.search(ln)
        if m:
            silences += 1
            silence_sec += int(m.group(1))
            continue
        for role in by_role:
            if f'{role}:' in ln:
                by_role[role] += 1
                break

    return {
        "total_lines": len(lines),
        "conversation_lines": by_role[ADVISOR] + by_role[CLIENT],
        "advisor_lines": by_role[ADVISOR],
        "client_lines": by_role[CLIENT],
        "third_party_lines": by_role[THIRD_PARTY],
        "silence_lines": silences,
        "silence_sec": silence_sec,
        "words": len((transcript or '').split()),
        "chars": len(transcript or ''),
    }
