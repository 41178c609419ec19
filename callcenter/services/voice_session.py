"""Realtime voice training session with a single provider fallback.

The session talks to a primary realtime provider and, if that connection
fails at any point, falls back once to a secondary provider. Whatever
provider is live, transcript lines are captured into one list so the
training record does not care which backend produced them.
"""
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import InvalidTransition

logger = logging.getLogger(__name__)


class State(str, Enum):
    IDLE = 'idle'
    CONNECTING_PRIMARY = 'connecting_primary'
    CONNECTED_PRIMARY = 'connected_primary'
    FALLING_BACK = 'falling_back'
    CONNECTING_SECONDARY = 'connecting_secondary'
    CONNECTED_SECONDARY = 'connected_secondary'
    ENDING = 'ending'
    ENDED = 'ended'


class Event(str, Enum):
    START = 'start'
    CONNECT_SUCCEEDED = 'connect_succeeded'
    CONNECT_FAILED = 'connect_failed'
    TIMEOUT = 'timeout'
    REMOTE_ERROR = 'remote_error'
    USER_HANGUP = 'user_hangup'
    CLOSED = 'closed'


FAILURES = (Event.CONNECT_FAILED, Event.TIMEOUT, Event.REMOTE_ERROR)

TRANSITIONS: Dict[Tuple[State, Event], State] = {
    (State.IDLE, Event.START): State.CONNECTING_PRIMARY,

    (State.CONNECTING_PRIMARY, Event.CONNECT_SUCCEEDED): State.CONNECTED_PRIMARY,
    (State.CONNECTING_PRIMARY, Event.USER_HANGUP): State.ENDING,
    (State.CONNECTED_PRIMARY, Event.USER_HANGUP): State.ENDING,

    # primary connection torn down, open the secondary
    (State.FALLING_BACK, Event.CLOSED): State.CONNECTING_SECONDARY,
    (State.FALLING_BACK, Event.USER_HANGUP): State.ENDING,

    (State.CONNECTING_SECONDARY, Event.CONNECT_SUCCEEDED): State.CONNECTED_SECONDARY,
    (State.CONNECTING_SECONDARY, Event.USER_HANGUP): State.ENDING,
    (State.CONNECTED_SECONDARY, Event.USER_HANGUP): State.ENDING,

    (State.ENDING, Event.CLOSED): State.ENDED,
}
for _ev in FAILURES:
    TRANSITIONS[(State.CONNECTING_PRIMARY, _ev)] = State.FALLING_BACK
    TRANSITIONS[(State.CONNECTED_PRIMARY, _ev)] = State.FALLING_BACK
    TRANSITIONS[(State.CONNECTING_SECONDARY, _ev)] = State.ENDING
    TRANSITIONS[(State.CONNECTED_SECONDARY, _ev)] = State.ENDING

CONNECTED = (State.CONNECTED_PRIMARY, State.CONNECTED_SECONDARY)


@dataclass
class TranscriptEntry:
    role: str
    text: str
    provider: str
    at: float = field(default_factory=time.time)


class VoiceSession:
    def __init__(self, primary: str = 'elevenlabs', secondary: str = 'openai-realtime',
                 on_transition: Optional[Callable[[State, Event, State], None]] = None):
        self.primary = primary
        self.secondary = secondary
        self.state = State.IDLE
        self.transcript: List[TranscriptEntry] = []
        self.history: List[Tuple[State, Event, State]] = []
        self.fell_back = False
        self.end_reason: Optional[str] = None
        self._on_transition = on_transition

    @classmethod
    def restore(cls, primary, secondary, state, fell_back=False, end_reason=None,
                transcript=None, on_transition=None):
        """Rebuild a session from persisted fields."""
        session = cls(primary, secondary, on_transition=on_transition)
        session.state = State(state)
        session.fell_back = bool(fell_back)
        session.end_reason = end_reason
        session.transcript = [TranscriptEntry(**e) for e in transcript or []]
        return session

    @property
    def provider(self) -> Optional[str]:
        if self.state in (State.CONNECTING_PRIMARY, State.CONNECTED_PRIMARY):
            return self.primary
        if self.state in (State.CONNECTING_SECONDARY, State.CONNECTED_SECONDARY):
            return self.secondary
        return None

    @property
    def is_connected(self) -> bool:
        return self.state in CONNECTED

    def handle(self, event, reason: Optional[str] = None) -> State:
        """Apply one event; raises InvalidTransition if it is not legal now."""
        event = Event(event)
        target = TRANSITIONS.get((self.state, event))
        if target is None:
            raise InvalidTransition(f'{event.value} not allowed in state {self.state.value}')

        source = self.state
        if target == State.FALLING_BACK:
            self.fell_back = True
            logger.warning('Primary provider %s failed (%s: %s), falling back to %s',
                           self.primary, event.value, reason or '-', self.secondary)
        elif target == State.ENDING and self.end_reason is None:
            self.end_reason = reason or event.value
            if event in FAILURES:
                logger.error('Secondary provider %s failed (%s: %s), ending session',
                             self.secondary, event.value, reason or '-')

        self.state = target
        self.history.append((source, event, target))
        logger.info('voice session %s -> %s on %s', source.value, target.value, event.value)
        if self._on_transition:
            self._on_transition(source, event, target)
        return target

    def capture(self, role: str, text: str) -> TranscriptEntry:
        """Record a transcript line from whichever provider is live."""
        if not self.is_connected:
            raise InvalidTransition(f'cannot capture transcript in state {self.state.value}')
        text = (text or '').strip()
        if not role or not text:
            raise ValueError('role and text are required')
        entry = TranscriptEntry(role=role, text=text, provider=self.provider)
        self.transcript.append(entry)
        return entry

    # convenience wrappers for the common signals
    def start(self):
        return self.handle(Event.START)

    def connected(self):
        return self.handle(Event.CONNECT_SUCCEEDED)

    def failed(self, event=Event.CONNECT_FAILED, reason=None):
        if Event(event) not in FAILURES:
            raise ValueError(f'{event} is not a failure event')
        return self.handle(event, reason)

    def hangup(self):
        return self.handle(Event.USER_HANGUP, 'user_hangup')

    def closed(self):
        return self.handle(Event.CLOSED)

    def transcript_text(self) -> str:
        return '\n'.join(f'{e.role}: {e.text}' for e in self.transcript)

    def transcript_entries(self):
        return [{'role': e.role, 'text': e.text, 'provider': e.provider, 'at': e.at}
                for e in self.transcript]

    def to_dict(self):
        return {
            'state': self.state.value,
            'provider': self.provider,
            'fellBack': self.fell_back,
            'endReason': self.end_reason,
            'transcript': self.transcript_entries(),
        }
