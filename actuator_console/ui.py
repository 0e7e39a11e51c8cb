from __future__ import annotations

import asyncio
import curses
import logging
from typing import Awaitable, Callable, Dict, Optional

from .controller import Action, AppState, apply_action
from .protocol import Command

LOGGER = logging.getLogger(__name__)

INPUT_POLL_MS = 100

KEY_BINDINGS: Dict[int, Action] = {
    curses.KEY_UP: Action.SPEED_UP,
    curses.KEY_DOWN: Action.SPEED_DOWN,
    curses.KEY_LEFT: Action.DIRECTION_BACKWARD,
    curses.KEY_RIGHT: Action.DIRECTION_FORWARD,
    ord("+"): Action.BOOST_UP,
    ord("-"): Action.BOOST_DOWN,
    ord("s"): Action.STOP,
    ord("a"): Action.SWITCH_ACTUATOR,
    ord("q"): Action.QUIT,
}

HELP_LINES = (
    "Up/Down: Change speed | Left/Right: Switch direction | q: Quit",
    "s: Stop motor | +/-: Increase/decrease speed by 5000 | a: Change actuator (bucket or lift)",
)


class TerminalSession:
    """Context manager that puts the terminal in curses mode and always restores it."""

    def __init__(self) -> None:
        self.stdscr: Optional["curses._CursesWindow"] = None

    def __enter__(self) -> "curses._CursesWindow":
        self.stdscr = curses.initscr()
        try:
            curses.noecho()
            curses.cbreak()
            self.stdscr.keypad(True)
            try:
                curses.curs_set(0)
            except curses.error:
                pass
            self.stdscr.timeout(INPUT_POLL_MS)
        except BaseException:
            self.restore()
            raise
        return self.stdscr

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.restore()
        return False

    def restore(self) -> None:
        if self.stdscr is None:
            return
        self.stdscr.keypad(False)
        curses.nocbreak()
        curses.echo()
        try:
            curses.curs_set(1)
        except curses.error:
            pass
        curses.endwin()
        self.stdscr = None


def _safe_addstr(win: "curses._CursesWindow", y: int, x: int, s: str, attr: int = 0) -> None:
    try:
        max_y, max_x = win.getmaxyx()
        if y < 0 or y >= max_y or x >= max_x:
            return
        s = s[: max(0, max_x - x)]
        if not s:
            return
        win.addstr(y, x, s, attr)
    except curses.error:
        return


def _draw_box(win: "curses._CursesWindow", y: int, x: int, h: int, w: int, title: str = "") -> None:
    if h < 2 or w < 2:
        return

    _safe_addstr(win, y, x, "+" + ("-" * (w - 2)) + "+")
    for row in range(y + 1, y + h - 1):
        _safe_addstr(win, row, x, "|")
        _safe_addstr(win, row, x + w - 1, "|")
    _safe_addstr(win, y + h - 1, x, "+" + ("-" * (w - 2)) + "+")

    if title and w >= 6:
        _safe_addstr(win, y, x + 2, f" {title} "[: max(0, w - 4)])


def format_length(state: AppState) -> str:
    length = 0.0 if state.telemetry is None else state.telemetry.length_m
    return f"Actuator len (m): {length}"


def render(win: "curses._CursesWindow", state: AppState) -> None:
    """Draw the speed, direction, info and help panels stacked top to bottom."""
    win.erase()
    max_y, max_x = win.getmaxyx()
    top, left = 1, 1
    width = max_x - 2
    height = max(3, (max_y - 2) // 4)

    panels = (
        ("Motor Speed", [f"Speed: {state.speed} / {state.max_speed}"]),
        ("Motor Direction", [f"Direction: {state.direction.label}"]),
        ("Info", None),
        ("Controls", list(HELP_LINES)),
    )
    for index, (title, lines) in enumerate(panels):
        y = top + index * height
        _draw_box(win, y, left, height, width, title)
        if lines is None:
            half = max(1, (width - 2) // 2)
            status = f"Status: {state.status_message} | {state.actuator.label}"
            _safe_addstr(win, y + 1, left + 1, status[: max(0, half - 1)])
            _safe_addstr(win, y + 1, left + 1 + half, format_length(state))
            continue
        for offset, line in enumerate(lines[: max(0, height - 2)]):
            _safe_addstr(win, y + 1 + offset, left + 1, line[: max(0, width - 2)])

    win.refresh()


def drain_pending(state: AppState, statuses: asyncio.Queue, samples: asyncio.Queue) -> None:
    try:
        state.status_message = statuses.get_nowait()
    except asyncio.QueueEmpty:
        pass
    try:
        state.telemetry = samples.get_nowait()
    except asyncio.QueueEmpty:
        pass


def enqueue_command(state: AppState, commands: asyncio.Queue, cmd: Command) -> bool:
    try:
        commands.put_nowait(cmd)
    except asyncio.QueueFull:
        LOGGER.warning("Command queue full, dropped %s", cmd)
        state.status_message = "Command queue full"
        return False
    return True


async def run_interaction_loop(
    state: AppState,
    commands: asyncio.Queue,
    statuses: asyncio.Queue,
    samples: asyncio.Queue,
    draw: Callable[[AppState], None],
    poll_key: Callable[[], Awaitable[int]],
) -> None:
    while True:
        drain_pending(state, statuses, samples)
        draw(state)

        key = await poll_key()
        action = KEY_BINDINGS.get(key)
        if action is None:
            continue
        if action is Action.QUIT:
            return

        for cmd in apply_action(state, action):
            enqueue_command(state, commands, cmd)


def curses_io(stdscr: "curses._CursesWindow"):
    """Return the ``draw`` and ``poll_key`` callables bound to a curses window."""

    def draw(state: AppState) -> None:
        render(stdscr, state)

    async def poll_key() -> int:
        # getch blocks for up to INPUT_POLL_MS; keep it off the event loop
        return await asyncio.to_thread(stdscr.getch)

    return draw, poll_key
