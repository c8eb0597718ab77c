"""
Turn and Transcript Aggregation

Accumulates streaming transcript text into complete turns:
- User turns are sealed on a final transcript or silence timeout
- Assistant turns are filled from transcript deltas and sealed when the
  response finishes or is interrupted

History is append-only; sealed turns are immutable.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from seavoice.logger import get_logger

logger = get_logger(__name__)

# Appended to assistant turns cut short by barge-in
TRUNCATION_MARKER = "..."


class Speaker(Enum):
    """Who produced a turn."""
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ConversationTurn:
    """Single sealed utterance."""
    role: Speaker
    text: str
    timestamp: float = field(default_factory=time.time)
    truncated: bool = False

    def to_message(self) -> Dict[str, str]:
        """Convert to chat message format."""
        return {"role": self.role.value, "content": self.text}


class TranscriptAggregator:
    """
    Builds ordered conversation history from streaming transcripts.

    At most one user turn is sealed per listening cycle; the cycle is reset
    by `start_listening_cycle()` whenever capture (re)starts.
    """

    def __init__(self):
        self._history: List[ConversationTurn] = []

        # Current user utterance
        self._partial = ""
        self._user_sealed = False
        self._last_user_text = ""

        # Current assistant response
        self._assistant_open = False
        self._assistant_text = ""
        self._assistant_started_at = 0.0

    # ========================================================================
    # User Side
    # ========================================================================

    def start_listening_cycle(self) -> None:
        """Begin a new user turn window."""
        self._partial = ""
        self._user_sealed = False

    def update_partial(self, text: str) -> None:
        """Replace the live (unsealed) user transcript."""
        if self._user_sealed:
            return
        self._partial = text

    def seal_user(self, text: Optional[str] = None) -> Optional[ConversationTurn]:
        """
        Seal the user utterance of this listening cycle.

        Args:
            text: Final transcript; defaults to the live partial transcript

        Returns:
            The appended turn, or None if already sealed or the text is empty
        """
        if self._user_sealed:
            logger.debug("User turn already sealed for this cycle")
            return None

        final = (text if text is not None else self._partial).strip()
        if not final:
            return None

        turn = ConversationTurn(role=Speaker.USER, text=final)
        self._history.append(turn)
        self._user_sealed = True
        self._partial = ""
        self._last_user_text = final
        logger.info(f"User: {final}")
        return turn

    # ========================================================================
    # Assistant Side
    # ========================================================================

    def begin_assistant(self) -> None:
        """Open an assistant turn for the current response if none is open."""
        if self._assistant_open:
            return
        self._assistant_open = True
        self._assistant_text = ""
        self._assistant_started_at = time.time()

    def append_assistant(self, delta: str) -> None:
        self.begin_assistant()
        self._assistant_text += delta

    def replace_assistant_text(self, text: str) -> None:
        """Apply the authoritative full transcript of the current response."""
        if not text:
            return
        self.begin_assistant()
        self._assistant_text = text

    def seal_assistant(self, truncated: bool = False) -> Optional[ConversationTurn]:
        """
        Seal the open assistant turn.

        Args:
            truncated: The response was interrupted; mark the text as cut short

        Returns:
            The appended turn, or None if nothing was open or the text is empty
        """
        if not self._assistant_open:
            return None

        self._assistant_open = False
        text = self._assistant_text.strip()
        if not text:
            return None

        if truncated:
            text = f"{text}{TRUNCATION_MARKER}"
            self._assistant_text = text

        turn = ConversationTurn(
            role=Speaker.ASSISTANT,
            text=text,
            timestamp=self._assistant_started_at,
            truncated=truncated,
        )
        self._history.append(turn)
        logger.info(f"Assistant: {text}")
        return turn

    # ========================================================================
    # Read-only Views
    # ========================================================================

    @property
    def live_transcript(self) -> str:
        return self._partial

    @property
    def transcribed_text(self) -> str:
        """Last sealed user utterance."""
        return self._last_user_text

    @property
    def assistant_text(self) -> str:
        """Text of the open assistant turn, or of the last one sealed."""
        return self._assistant_text

    @property
    def assistant_open(self) -> bool:
        return self._assistant_open

    @property
    def user_sealed(self) -> bool:
        return self._user_sealed

    @property
    def history(self) -> Tuple[ConversationTurn, ...]:
        return tuple(self._history)

    @property
    def turn_count(self) -> int:
        return len(self._history)

    def to_messages(self) -> List[Dict[str, str]]:
        return [turn.to_message() for turn in self._history]
