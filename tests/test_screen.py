"""Tests for curses key normalization."""

import curses

import pytest

from whoopterm.dashboard.screen import normalize_key


@pytest.mark.parametrize("code,expected", [
    (-1, None),
    (curses.KEY_LEFT, "left"),
    (curses.KEY_RIGHT, "right"),
    (curses.KEY_UP, "up"),
    (curses.KEY_DOWN, "down"),
    (curses.KEY_BTAB, "btab"),
    (10, "enter"),
    (9, "tab"),
    (27, "esc"),
    (ord("Q"), "q"),
    (ord(" "), " "),
    (ord("3"), "3"),
    (curses.KEY_RESIZE, None),
])
def test_normalize_key(code, expected):
    assert normalize_key(code) == expected
