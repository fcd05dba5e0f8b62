from __future__ import annotations

import curses
from typing import Callable, List

from .metrics import Metrics

TITLE = "UDP Proxy Metrics"
BAR_WIDTH = 5
BAR_GAP = 3


def bar_heights(metrics: Metrics, rows: int) -> List[int]:
    """Scale the four counters onto `rows` lines, tallest bar filling them."""
    values = [value for _, value in metrics.as_rows()]
    peak = max(values)
    if peak <= 0 or rows <= 0:
        return [0 for _ in values]
    return [max(1, round(value * rows / peak)) if value else 0 for value in values]


def _put(stdscr, y: int, x: int, text: str, attr: int = 0) -> None:
    height, width = stdscr.getmaxyx()
    if 0 <= y < height and 0 <= x < width:
        try:
            stdscr.addnstr(y, x, text, width - x - 1, attr)
        except curses.error:
            pass


def draw(stdscr, metrics: Metrics) -> None:
    stdscr.erase()
    height, width = stdscr.getmaxyx()
    stdscr.border()
    _put(stdscr, 0, 2, f" {TITLE} ", curses.A_BOLD)

    rows = metrics.as_rows()
    chart_rows = max(0, height - 5)
    bar_attr = curses.color_pair(1) if curses.has_colors() else curses.A_REVERSE
    for i, ((label, value), bar) in enumerate(zip(rows, bar_heights(metrics, chart_rows))):
        x = 2 + i * (BAR_WIDTH + BAR_GAP + 3)
        for level in range(bar):
            _put(stdscr, height - 4 - level, x, " " * BAR_WIDTH, bar_attr)
        _put(stdscr, height - 3, x, str(value).center(BAR_WIDTH))
        _put(stdscr, height - 2, x, label)
    _put(stdscr, height - 1, max(2, width - 14), " q to quit ")
    stdscr.refresh()


def run(snapshot: Callable[[], Metrics], refresh_ms: int = 100) -> None:
    """Render snapshots until `q` is pressed; the terminal is restored on exit."""

    def _main(stdscr) -> None:
        curses.curs_set(0)
        if curses.has_colors():
            curses.start_color()
            curses.use_default_colors()
            curses.init_pair(1, curses.COLOR_BLACK, curses.COLOR_CYAN)
        stdscr.timeout(refresh_ms)
        while True:
            draw(stdscr, snapshot())
            if stdscr.getch() in (ord("q"), ord("Q")):
                break

    curses.wrapper(_main)
