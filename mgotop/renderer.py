"""In-place tabular display of the busiest namespaces.

Frame layout (``limit + 2`` lines at most)::

    ====== mgotop ====== sort: total event count ====== 2024-01-01T12:00:00+01:00 ======
    total   rlock   wlock   query   insert  update  remove  getmore command ns
    <ESC>[2K 15  0  0  ...  db.coll
    ...

Every frame after the first starts by moving the cursor back up over the
previous one. Rows of a longer previous frame are left on screen.
"""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable
from datetime import datetime
from typing import TextIO

from mgotop.differ import Delta, Mode

CSI = "\033["
ERASE_LINE = f"{CSI}2K"
BOLD = f"{CSI}1m"
RESET = f"{CSI}0m"

# (header label, event name), in display order.
COLUMNS: tuple[tuple[str, str], ...] = (
    ("total", "total"),
    ("rlock", "readLock"),
    ("wlock", "writeLock"),
    ("query", "queries"),
    ("insert", "insert"),
    ("update", "update"),
    ("remove", "remove"),
    ("getmore", "getmore"),
    ("command", "commands"),
)

HEADER = "\t".join([label for label, _ in COLUMNS] + ["ns"])


def cursor_up(n: int) -> str:
    return f"{CSI}{n}A\r"


def _local_now() -> datetime:
    return datetime.now().astimezone()


def banner(sort_key: str, mode: Mode, now: datetime) -> str:
    stamp = now.isoformat(timespec="seconds")
    return f"====== mgotop ====== sort: {sort_key} {mode.unit} ====== {stamp} ======"


def format_row(delta: Delta) -> str:
    cells = [str(delta.values.get(event, 0)) for _, event in COLUMNS]
    cells.append(delta.namespace)
    return "\t".join(cells)


def fit_line(line: str, width: int, tabsize: int = 8) -> str:
    """Cut *line* so it occupies at most *width* terminal columns.

    Tabs are measured at their expanded width. A width <= 0 disables
    truncation.
    """
    if width <= 0:
        return line
    col = 0
    for i, ch in enumerate(line):
        step = tabsize - col % tabsize if ch == "\t" else 1
        if col + step > width:
            return line[:i]
        col += step
    return line


class Renderer:
    """Writes frames to a text stream.

    Args:
        stream: Destination, stdout by default.
        bold: Emphasise the banner.
        columns: Returns the current terminal width; lines are cut to it.
            None disables truncation.
        lock: Serialises writes with other writers of the same stream
            (the input drainer).
        clock: Source of the banner timestamp.
    """

    def __init__(
        self,
        stream: TextIO | None = None,
        bold: bool = True,
        columns: Callable[[], int] | None = None,
        lock: threading.Lock | None = None,
        clock: Callable[[], datetime] = _local_now,
    ):
        self._stream = stream if stream is not None else sys.stdout
        self._bold = bold
        self._columns = columns
        self._lock = lock or threading.Lock()
        self._clock = clock

    def _fit(self, line: str, width: int) -> str:
        return fit_line(line, width) if self._columns is not None else line

    def frame(
        self,
        deltas: list[Delta],
        sort_key: str,
        limit: int,
        first: bool,
        mode: Mode,
    ) -> str:
        """Build the text of one frame without writing it."""
        width = self._columns() if self._columns is not None else 0
        out: list[str] = []
        if not first:
            out.append(cursor_up(limit + 2))

        title = self._fit(banner(sort_key, mode, self._clock()), width)
        out.append(f"{BOLD}{title}{RESET}\n" if self._bold else f"{title}\n")
        out.append(self._fit(HEADER, width) + "\n")

        for delta in deltas[:limit]:
            out.append(ERASE_LINE + self._fit(format_row(delta), width) + "\n")
        return "".join(out)

    def render(
        self,
        deltas: list[Delta],
        sort_key: str,
        limit: int,
        first: bool,
        mode: Mode,
    ) -> None:
        text = self.frame(deltas, sort_key, limit, first, mode)
        with self._lock:
            self._stream.write(text)
            self._stream.flush()
