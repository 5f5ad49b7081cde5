"""Parse structured markers out of agent output.

Agents report progress with single-line ``KEY: value`` markers::

    TASK_COMPLETED: task-003
    FINALIZED: task-003

and signal that the whole task list is done with the literal sentinel
``<promise>COMPLETE</promise>``. Everything else in the output is free-form
text and is ignored by the tokenizer.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

COMPLETION_SENTINEL = "<promise>COMPLETE</promise>"

_ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")
# Markdown decoration agents like to wrap marker lines in.
_DECORATION = "*_`>#- \t"
_ID_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_.")


class MarkerKind(str, Enum):
    """Marker vocabulary understood by the phase driver."""

    TASK_COMPLETED = "TASK_COMPLETED"
    FINALIZED = "FINALIZED"


@dataclass(frozen=True)
class Marker:
    """A single marker line found in agent output."""

    kind: MarkerKind
    value: str
    line_number: int


class OutputParser:
    """Tokenize agent stdout into markers."""

    @staticmethod
    def tokenize_line(line: str, line_number: int = 0) -> Optional[Marker]:
        """Parse one line as a ``KEY: value`` marker.

        Returns None when the line is not a well-formed marker: unknown key,
        missing colon, or a value that is not a plain identifier (so template
        placeholders like ``<task-id>`` are never mistaken for real IDs).
        """
        text = line.strip().strip(_DECORATION)
        key, sep, rest = text.partition(":")
        if not sep:
            return None

        key = key.strip().strip(_DECORATION).upper()
        try:
            kind = MarkerKind(key)
        except ValueError:
            return None

        words = rest.strip().strip(_DECORATION).split()
        if not words:
            return None
        value = words[0].strip(_DECORATION).rstrip(".,;:")
        if not value or not set(value) <= _ID_CHARS:
            return None

        return Marker(kind=kind, value=value, line_number=line_number)

    @staticmethod
    def parse_markers(output: str) -> List[Marker]:
        """Return every marker in the output, in order of appearance."""
        if not output:
            return []

        markers = []
        cleaned = OutputParser.strip_ansi(output)
        for number, line in enumerate(cleaned.splitlines(), start=1):
            marker = OutputParser.tokenize_line(line, number)
            if marker is not None:
                markers.append(marker)
        return markers

    @staticmethod
    def find_marker(output: str, kind: MarkerKind) -> Optional[str]:
        """Return the value of the last marker of the given kind, if any.

        The last occurrence wins because agents are asked to print the
        marker as their final line.
        """
        found = None
        for marker in OutputParser.parse_markers(output):
            if marker.kind == kind:
                found = marker.value
        return found

    @staticmethod
    def has_completion_sentinel(output: str) -> bool:
        """Check for the global "all tasks complete" sentinel."""
        if not output:
            return False
        return COMPLETION_SENTINEL in OutputParser.strip_ansi(output)

    @staticmethod
    def strip_ansi(output: str) -> str:
        return _ANSI_ESCAPE.sub("", output)

    @staticmethod
    def sanitize_output(output: str, max_length: int = 10000) -> str:
        """Sanitize output for logging/display.

        Args:
            output: Raw output
            max_length: Maximum length to return

        Returns:
            Sanitized output string
        """
        if not output:
            return ""

        cleaned = OutputParser.strip_ansi(output)

        if len(cleaned) > max_length:
            cleaned = cleaned[:max_length] + f"\n... (truncated {len(cleaned) - max_length} characters)"

        return cleaned.strip()
