"""Curses screen: paints render snapshots and polls the keyboard."""

import curses
import logging
import textwrap
from typing import Optional

from whoopterm.dashboard.render import (
    STYLE_ALERT,
    STYLE_BAD,
    STYLE_DIM,
    STYLE_GOOD,
    STYLE_LABEL,
    STYLE_NORMAL,
    STYLE_SELECTED,
    STYLE_TITLE,
    STYLE_VALUE,
    STYLE_WARN,
    Snapshot,
)

logger = logging.getLogger(__name__)

# Curses colour-pair IDs
_PAIRS = {
    STYLE_GOOD: (1, curses.COLOR_GREEN),
    STYLE_WARN: (2, curses.COLOR_YELLOW),
    STYLE_BAD: (3, curses.COLOR_RED),
    STYLE_TITLE: (4, curses.COLOR_CYAN),
    STYLE_ALERT: (5, curses.COLOR_RED),
    STYLE_LABEL: (6, curses.COLOR_WHITE),
}

_SPECIAL_KEYS = {
    curses.KEY_LEFT: "left",
    curses.KEY_RIGHT: "right",
    curses.KEY_UP: "up",
    curses.KEY_DOWN: "down",
    curses.KEY_ENTER: "enter",
    curses.KEY_BTAB: "btab",
    10: "enter",
    13: "enter",
    9: "tab",
    27: "esc",
}


def normalize_key(code: int) -> Optional[str]:
    """Map a curses key code to the names used by the state machine."""
    if code == -1:
        return None
    if code in _SPECIAL_KEYS:
        return _SPECIAL_KEYS[code]
    if curses.KEY_MIN <= code <= curses.KEY_MAX:
        return None
    try:
        return chr(code).lower()
    except ValueError:
        return None


class CursesScreen:
    """Thin adapter over a curses window."""

    def __init__(self, stdscr, poll_timeout: float):
        self.stdscr = stdscr
        self.stdscr.keypad(True)
        self.stdscr.timeout(int(poll_timeout * 1000))
        try:
            curses.curs_set(0)
        except curses.error:
            pass
        self._attrs = {style: curses.A_NORMAL for style in (STYLE_NORMAL, STYLE_VALUE)}
        self._init_colors()

    def _init_colors(self) -> None:
        if curses.has_colors():
            curses.start_color()
            try:
                curses.use_default_colors()
                background = -1
            except curses.error:
                background = curses.COLOR_BLACK
            for style, (pair, fg) in _PAIRS.items():
                curses.init_pair(pair, fg, background)
                self._attrs[style] = curses.color_pair(pair)
        self._attrs[STYLE_TITLE] = self._attrs.get(STYLE_TITLE, curses.A_NORMAL) | curses.A_BOLD
        self._attrs[STYLE_ALERT] = self._attrs.get(STYLE_ALERT, curses.A_NORMAL) | curses.A_BOLD
        self._attrs[STYLE_DIM] = curses.A_DIM
        self._attrs[STYLE_SELECTED] = curses.A_REVERSE

    def poll_key(self) -> Optional[str]:
        """Wait up to the poll timeout for a key press."""
        return normalize_key(self.stdscr.getch())

    def _put(self, y: int, x: int, text: str, style: str) -> int:
        height, width = self.stdscr.getmaxyx()
        if y >= height or x >= width - 1:
            return x
        text = text[: max(0, width - 1 - x)]
        try:
            self.stdscr.addstr(y, x, text, self._attrs.get(style, curses.A_NORMAL))
        except curses.error:
            pass
        return x + len(text)

    def draw(self, snapshot: Snapshot) -> None:
        self.stdscr.erase()
        height, width = self.stdscr.getmaxyx()

        lines = [snapshot.header, snapshot.tabs, *snapshot.body]
        for y, line in enumerate(lines[: max(0, height - 1)]):
            x = 1
            for text, style in line:
                x = self._put(y, x, text, style)

        for text, style in snapshot.footer:
            self._put(height - 1, 0, text, style)

        if snapshot.alert:
            self._draw_alert(snapshot.alert, height, width)

        self.stdscr.refresh()

    def _draw_alert(self, message: str, height: int, width: int) -> None:
        box_width = max(20, int(width * 0.8))
        wrapped = textwrap.wrap(message, box_width - 4) or [""]
        top = max(0, (height - len(wrapped) - 2) // 2)
        left = max(0, (width - box_width) // 2)

        border = "─" * (box_width - 2)
        self._put(top, left, f"╭{border}╮", STYLE_ALERT)
        for offset, row in enumerate(wrapped, start=1):
            self._put(top + offset, left, f"│ {row.center(box_width - 4)} │", STYLE_ALERT)
        self._put(top + len(wrapped) + 1, left, f"╰{border}╯", STYLE_ALERT)
