"""Plain terminal output for snaptop."""

import sys
from typing import TextIO

CLEAR_SCREEN = "\033[2J\033[H"


class ConsoleDisplay:
    """Sink that clears the terminal and writes each frame in full."""

    def __init__(self, stream: TextIO | None = None, clear: bool = True) -> None:
        """Initialize ConsoleDisplay. Writes to stdout unless a stream is given."""
        self._stream = stream if stream is not None else sys.stdout
        self._clear = clear

    def __call__(self, frame: list[str]) -> None:
        """Redraw the terminal with one frame."""
        if self._clear:
            self._stream.write(CLEAR_SCREEN)
        self._stream.write("\n".join(frame))
        self._stream.write("\n")
        self._stream.flush()
