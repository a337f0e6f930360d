"""Instruction-wrap protocol and turn-boundary detection."""

import string
from dataclasses import dataclass

from .models import Role, Turn

_ASCII_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)

SUMMARY_TEMPLATE = (
    "Summarize the following conversation in a few sentences. Keep clinical "
    "facts, questions asked and conclusions reached. Do not add information "
    "that is not in the conversation.\n\n{history}"
)


@dataclass(frozen=True)
class InstructionFormat:
    """Marker vocabulary shared by prompt assembly and stop detection."""

    begin_turn: str = "<s>"
    end_turn: str = "</s>"
    instruction_open: str = "[INST]"
    instruction_close: str = "[/INST]"
    role_prefixes: tuple[str, ...] = ("\nUser:", "User:", "\nAssistant:", "Assistant:")

    def wrap_instruction(self, text: str) -> str:
        return (
            f"{self.begin_turn}{self.instruction_open} {text} "
            f"{self.instruction_close}"
        )

    def wrap_system(self, text: str) -> str:
        return f"{self.wrap_instruction(text)}{self.end_turn}"

    def render_turn(self, turn: Turn) -> str:
        if turn.role is Role.SYSTEM:
            return self.wrap_system(turn.text)
        if turn.role is Role.USER:
            return self.wrap_instruction(turn.text)
        return f"{turn.text}{self.end_turn}"

    def render(self, turns: list[Turn] | tuple[Turn, ...]) -> str:
        return "".join(self.render_turn(turn) for turn in turns)

    @property
    def stop_markers(self) -> tuple[str, ...]:
        return (
            *self.role_prefixes,
            self.begin_turn,
            self.instruction_open,
            self.instruction_close,
            self.end_turn,
        )

    def strip_markers(self, text: str) -> str:
        """Remove every marker occurrence, case-insensitively."""
        for marker in sorted(self.stop_markers, key=len, reverse=True):
            lowered = fold_case(text)
            needle = fold_case(marker)
            pieces = []
            start = 0
            index = lowered.find(needle)
            while index >= 0:
                pieces.append(text[start:index])
                start = index + len(needle)
                index = lowered.find(needle, start)
            pieces.append(text[start:])
            text = "".join(pieces)
        return text.strip()


def fold_case(text: str) -> str:
    """Lower-case ASCII letters only, so offsets match the original text."""
    return text.translate(_ASCII_LOWER)


class StopSequenceScanner:
    """Incremental, case-insensitive search for the earliest stop marker.

    Text is fed one token at a time. Only the region that could contain a
    marker ending in the newest token is searched, so a scan is bounded by
    the token length plus the longest marker.
    """

    def __init__(self, markers: tuple[str, ...]) -> None:
        self.markers = tuple(fold_case(marker) for marker in markers if marker)
        self._longest = max((len(marker) for marker in self.markers), default=0)
        self._folded = ""
        self.text = ""
        self.stop_offset: int | None = None

    def feed(self, token: str) -> int | None:
        """Append a token and look for a marker.

        Returns:
            The earliest marker offset in the accumulated text, or None.
        """
        if self.stop_offset is not None:
            return self.stop_offset

        search_from = max(0, len(self.text) - self._longest + 1)
        self.text += token
        self._folded += fold_case(token)

        earliest = None
        for marker in self.markers:
            index = self._folded.find(marker, search_from)
            if index >= 0 and (earliest is None or index < earliest):
                earliest = index
        self.stop_offset = earliest
        return earliest

    @property
    def committed_text(self) -> str:
        """Accumulated text truncated at the stop marker, if any."""
        if self.stop_offset is None:
            return self.text
        return self.text[: self.stop_offset]
