"""Speaker-turn reconstruction for transcripts without diarization.

The speech model returns time-ordered segments with no speaker labels. These
heuristics assign each segment to Asesor (advisor), Cliente (client) or
Tercero (third party) from lexical cues and silence gaps, and serialize the
result as `[m:ss] Role: text` lines with inline silence annotations.

The attribution is approximate by nature: it reproduces fixed scoring
thresholds, not ground-truth speaker identity. Everything here is pure (no
I/O, no app context) so it can be tested in isolation.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

ADVISOR = 'Asesor'
CLIENT = 'Cliente'
THIRD_PARTY = 'Tercero'
SILENCE = 'Silencio'

NO_TRANSCRIPT = 'No hay transcripción disponible'

NO_SPEECH_MAX = 0.6
SILENCE_MARK_SEC = 2.0
BASE_SWITCH_THRESHOLD = 1.5

NOISE_TAGS = re.compile(
    r'(\[(noise|music|música|ruido|laughter|risas|aplausos|background|fondo|inaudible)\])'
    r'|\((noise|music|música|ruido|laughter|risas|aplausos|inaudible)\)',
    re.IGNORECASE,
)
PUNCT_ONLY = re.compile(r'^[.,!?;:\s\-_]+$')
CONTROL_CHARS = re.compile(r'[\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F-\u009F]')

# fragments of the instruction prompt that the model sometimes echoes back
PROMPT_CONTAMINATION = (
    'transcribe fielmente',
    'identifica claramente',
    'separa los turnos',
    'conversación telefónica',
    'asesor comercial',
    'cliente potencial',
    'no inventes contenido',
    'exactamente lo que escuchas',
    'incluye pausas significativas',
    'como silencio',
)
PLAIN_TEXT_CONTAMINATION = (
    re.compile(r'transcribe fielmente.*?escuchas\.', re.IGNORECASE),
    re.compile(r'identifica claramente.*?cliente\.', re.IGNORECASE),
    re.compile(r'separa los turnos.*?correctamente\.', re.IGNORECASE),
    re.compile(r'esta es una conversación.*?potencial\.', re.IGNORECASE),
)

ADVISOR_CUES = (
    (re.compile(r'\b(nosotros|nuestro|nuestra|nuestros|nuestras)\b'), 2),
    (re.compile(r'\b(ofrecemos|podemos|contamos|queremos)\b'), 2),
    (re.compile(r'\b(verificar|confirmar|validar|registrar|activar|instalación|contrato|plan|servicio|promoción)\b'), 3),
    (re.compile(r'\b(señor|señora|don|doña|permítame|permíteme|por seguridad|con quién tengo el gusto)\b'), 2),
    (re.compile(r'\b(documento|c[eé]dula|n[uú]mero)\b'), 1),
)
ADVISOR_INTRO = re.compile(r'\b(me comunico|llamo de|mi nombre es|de parte de)\b')
CLIENT_CUES = (
    (re.compile(r'\b(yo|mi|mis|me|tengo|quiero|necesito|puedo|estoy)\b'), 2),
    (re.compile(r'\b(no me interesa|ya tengo|muy caro|no quiero)\b'), 3),
    (re.compile(r'\b(cu[aá]nto|precio|vale|cuesta|c[oó]mo|d[óo]nde|por qu[eé]|para qu[eé])\b'), 2),
)
THIRD_PARTY_CUES = re.compile(
    r'\b(supervisor|gerente|coordinador|transferir|transferencia|soporte|[aá]rea t[eé]cnica'
    r'|backoffice|te paso con|lo comunico|la comunico|otra [aá]rea)\b'
)
QUESTION = re.compile(r'[¿?]')
QUESTION_CLIENT_CUES = ('cómo', 'cuánto', 'dónde', 'por qué', 'para qué',
                        'tiene', 'hay', 'puedo', 'quiero', 'necesito')
ROLE_LINE = re.compile(r'^(\[[^\]\n]*\] )(Asesor|Cliente): ')


def sentinel(reason: str) -> str:
    return f'{NO_TRANSCRIPT} - {reason}'


def is_sentinel(text: Optional[str]) -> bool:
    return bool(text) and NO_TRANSCRIPT in text


@dataclass
class TranscriptSegment:
    start: float
    end: float
    text: str
    no_speech_prob: float = 0.0
    role: Optional[str] = None

    def __post_init__(self):
        self.start = float(self.start or 0)
        self.end = max(self.start, float(self.end or 0))

    @property
    def duration(self):
        return self.end - self.start

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'TranscriptSegment':
        nsp = d.get('no_speech_prob')
        return cls(
            start=d.get('start') or 0,
            end=d.get('end') or 0,
            text=(d.get('text') or '').strip(),
            no_speech_prob=nsp if isinstance(nsp, (int, float)) else 0.0,
        )


@dataclass
class SpeakerScores:
    advisor: int = 0
    client: int = 0
    third_party: int = 0


@dataclass
class TurnDecision:
    role: str
    reason: str
    switched: bool = field(default=False)


def format_timestamp(seconds: float) -> str:
    seconds = max(0.0, float(seconds))
    return f'{int(seconds // 60)}:{int(seconds % 60):02d}'


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def clean_text(text: str) -> str:
    text = NOISE_TAGS.sub('', text or '')
    text = CONTROL_CHARS.sub('', text)
    return re.sub(r'\s+', ' ', text).strip()


def _has_prompt_contamination(text: str) -> bool:
    lower = text.lower()
    return any(c in lower for c in PROMPT_CONTAMINATION)


def is_valid_segment(seg: TranscriptSegment) -> bool:
    text = (seg.text or '').strip()
    return (
        len(text) > 2
        and not PUNCT_ONLY.match(text)
        and not _has_prompt_contamination(text)
        and not NOISE_TAGS.search(text)
        and seg.no_speech_prob < NO_SPEECH_MAX
    )


def filter_segments(segments: Iterable[TranscriptSegment]) -> List[TranscriptSegment]:
    return [s for s in segments if is_valid_segment(s)]


def score_segment(text: str, index: int) -> SpeakerScores:
    """Lexical speaker cues for one segment; index is its position in the call."""
    lower = text.lower()
    scores = SpeakerScores()

    for rx, weight in ADVISOR_CUES:
        if rx.search(lower):
            scores.advisor += weight
    for rx, weight in CLIENT_CUES:
        if rx.search(lower):
            scores.client += weight
    has_question = bool(QUESTION.search(text))
    if has_question:
        scores.client += 1
    if THIRD_PARTY_CUES.search(lower):
        scores.third_party += 3

    # the opening self-introduction belongs to the advisor
    if index <= 2 and ADVISOR_INTRO.search(lower):
        scores.advisor += 3

    word_count = len(lower.split())
    if word_count >= 12:
        scores.advisor += 1
    if word_count <= 4 and has_question:
        scores.client += 1
    return scores


def is_client_question(text: str) -> bool:
    lower = text.lower()
    return bool(QUESTION.search(text)) and any(c in lower for c in QUESTION_CLIENT_CUES)


def _other(role: str) -> str:
    return CLIENT if role == ADVISOR else ADVISOR


def decide_turn(scores: SpeakerScores, current: str, gap: float, previous_duration: float,
                consecutive: int, client_question: bool = False) -> TurnDecision:
    """First matching rule wins; falls through to keeping the current speaker."""
    dynamic_threshold = min(max(previous_duration * 0.8, 1.0), 3.0)

    if (scores.third_party > max(scores.advisor, scores.client)
            and scores.third_party > 0 and current != THIRD_PARTY):
        return TurnDecision(THIRD_PARTY, 'third_party_cues', True)
    if scores.advisor > scores.client and scores.advisor > 0 and current != ADVISOR:
        return TurnDecision(ADVISOR, 'advisor_cues', True)
    if scores.client > scores.advisor and scores.client > 0 and current != CLIENT:
        return TurnDecision(CLIENT, 'client_cues', True)
    if gap > max(BASE_SWITCH_THRESHOLD, dynamic_threshold) and consecutive > 2:
        return TurnDecision(_other(current), 'silence_gap', True)
    if consecutive > 3 and gap > 0.8:
        return TurnDecision(_other(current), 'long_monologue', True)
    if client_question and current == ADVISOR:
        return TurnDecision(CLIENT, 'client_question', True)
    return TurnDecision(current, 'keep', False)


def format_segments(segments: List[TranscriptSegment]) -> str:
    """Assign roles to valid segments and serialize them.

    Returns a sentinel when no segment survives filtering.
    """
    valid = filter_segments(segments)
    logger.info('%s valid segments after cleaning (removed %s)', len(valid), len(segments) - len(valid))
    if not valid:
        return sentinel('no se detectó contenido de conversación válido')

    ordered = sorted(valid, key=lambda s: s.start)
    current = ADVISOR
    last_end = 0.0
    consecutive = 0
    out = []

    for index, seg in enumerate(ordered):
        text = seg.text.strip()
        gap = seg.start - last_end
        prev_start = ordered[index - 1].start if index > 0 else 0.0
        previous_duration = max(0.0, last_end - prev_start)

        decision = decide_turn(
            score_segment(text, index), current, gap, previous_duration,
            consecutive, is_client_question(text),
        )
        if decision.switched:
            logger.debug('switching to %s (%s): %r', decision.role, decision.reason, text[:30])
            current = decision.role
            consecutive = 0
        consecutive += 1
        seg.role = current

        out.append(f'[{format_timestamp(seg.start)}] {current}: {clean_text(text)}\n')
        last_end = seg.end

        if index + 1 < len(ordered):
            silence = ordered[index + 1].start - seg.end
            if silence >= SILENCE_MARK_SEC:
                out.append(f'[{format_timestamp(math.floor(seg.end))}] {SILENCE}: '
                           f'{_round_half_up(silence)} segundos de pausa\n')
    return ''.join(out)


def format_plain_text(raw_text: str) -> str:
    """Fallback for models that return flat text without segments."""
    if not raw_text or len(raw_text.strip()) < 10:
        return sentinel('no se detectó contenido de audio válido')

    cleaned = raw_text
    for rx in PLAIN_TEXT_CONTAMINATION:
        cleaned = rx.sub('', cleaned)
    cleaned = cleaned.strip()
    if len(cleaned) < 10:
        return sentinel('texto insuficiente después de limpieza')

    sentences = [s.strip() for s in re.split(r'[.!?]+', cleaned) if len(s.strip()) > 5]
    current = ADVISOR
    out = []
    for index, sentence in enumerate(sentences):
        out.append(f'[{format_timestamp(index * 8)}] {current}: {sentence}.\n')
        if index > 0 and ((index + 1) % 2 == 0 or (index + 1) % 3 == 0):
            current = _other(current)
    return ''.join(out)


def balance_speakers(transcript: str) -> str:
    """Make sure both Asesor and Cliente appear.

    When one role is missing, a share of the present role's lines is relabeled
    by zero-based line number: `n % 3 == 1` for a missing client, `n % 3 == 0`
    for a missing advisor.
    """
    lines = transcript.split('\n')
    has_advisor = any(f'{ADVISOR}:' in ln for ln in lines)
    has_client = any(f'{CLIENT}:' in ln for ln in lines)
    if has_advisor == has_client:
        return transcript

    present, missing, remainder = (ADVISOR, CLIENT, 1) if has_advisor else (CLIENT, ADVISOR, 0)
    for n, line in enumerate(lines):
        m = ROLE_LINE.match(line)
        if m and m.group(2) == present and n % 3 == remainder:
            lines[n] = f'{m.group(1)}{missing}: ' + line[m.end():]
    return '\n'.join(lines)


def conversation_lines(transcript: str) -> List[str]:
    return [ln for ln in transcript.split('\n')
            if ln.strip() and (f'{ADVISOR}:' in ln or f'{CLIENT}:' in ln)]


def finalize_transcript(transcript: str) -> str:
    if not transcript or not transcript.strip():
        return sentinel('error en el procesamiento del audio')
    if len(conversation_lines(transcript)) < 2:
        logger.info('Insufficient conversation detected')
        return sentinel('no se detectó conversación suficiente en el audio')
    return balance_speakers(transcript)


def attribute_speakers(source: Union[Dict[str, Any], List[Any], str]) -> str:
    """Build the formatted transcript from a model response.

    `source` may be a transcription response dict (`segments` and/or `text`),
    a list of segments (dicts or TranscriptSegment) or flat text.
    """
    segments = None
    text = ''
    if isinstance(source, dict):
        segments = source.get('segments') or None
        text = source.get('text') or ''
    elif isinstance(source, list):
        segments = source
    else:
        text = source or ''

    if segments:
        segs = [s if isinstance(s, TranscriptSegment) else TranscriptSegment.from_dict(s) for s in segments]
        formatted = format_segments(segs)
    else:
        logger.info('No segments available, using raw text')
        formatted = format_plain_text(text)

    if is_sentinel(formatted):
        return formatted
    return finalize_transcript(formatted)
