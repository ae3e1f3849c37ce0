"""Keeps stray keystrokes from scrolling the live display.

When the user hits Enter the terminal echoes a newline and the whole frame
moves down a line. The drainer reads stdin on its own thread and, for every
line it sees, moves the cursor back up and erases that line.

Alternatively :func:`suppress_echo` turns tty echo off so nothing needs
undoing; the drainer then only consumes input.
"""

from __future__ import annotations

import sys
import termios
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TextIO

UNDO_NEWLINE = "\033[1A\033[2K\r"


class InputError(Exception):
    """Reading standard input failed."""


@contextmanager
def suppress_echo(stream: TextIO | None = None) -> Iterator[bool]:
    """Disable terminal echo on *stream* for the duration of the block.

    Yields True if echo was turned off, False when the stream is not a tty.
    The previous terminal attributes are restored on exit.
    """
    stream = stream if stream is not None else sys.stdin
    if not stream.isatty():
        yield False
        return
    fd = stream.fileno()
    saved = termios.tcgetattr(fd)
    attrs = termios.tcgetattr(fd)
    attrs[3] &= ~termios.ECHO  # lflag
    termios.tcsetattr(fd, termios.TCSADRAIN, attrs)
    try:
        yield True
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


class InputDrainer:
    """Background reader of standard input.

    A read failure is stored in :attr:`error` and :attr:`failed` is set so
    the driver can stop. End-of-file is deliberately not fatal: it just ends
    the thread, so a monitor started with stdin from /dev/null keeps running.
    """

    def __init__(
        self,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        lock: threading.Lock | None = None,
        silent: bool = False,
    ):
        self._stdin = stdin if stdin is not None else sys.stdin
        self._stdout = stdout if stdout is not None else sys.stdout
        self._lock = lock or threading.Lock()
        self._silent = silent
        self._thread: threading.Thread | None = None
        self.failed = threading.Event()
        self.error: InputError | None = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self.run, name="mgotop-stdin", daemon=True
        )
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> None:
        try:
            while True:
                line = self._stdin.readline()
                if not line:
                    return
                if line.endswith("\n") and not self._silent:
                    with self._lock:
                        self._stdout.write(UNDO_NEWLINE)
                        self._stdout.flush()
        except (OSError, ValueError) as e:
            self.error = InputError(f"reading stdin: {e}")
            self.error.__cause__ = e
            self.failed.set()
