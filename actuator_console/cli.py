from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Optional

import serial

from .controller import AppState
from .protocol import PROTOCOL_VERSION, Command
from .transport import (
    BAUD_RATE,
    COMMAND_QUEUE_SIZE,
    STATUS_QUEUE_SIZE,
    TELEMETRY_QUEUE_SIZE,
    SerialLink,
    command_dispatcher,
    telemetry_reader,
)
from .ui import TerminalSession, curses_io, run_interaction_loop

LOGGER = logging.getLogger(__name__)

USAGE_HINT = "supply path argument. Example: /dev/ttyACM0"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class SessionLogger:
    """Append-only JSONL record of what was sent to the driver during a run."""

    def __init__(self, path: Optional[str]) -> None:
        self._path = Path(path).expanduser() if path else None
        self._file = None
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self._path.open("a", encoding="utf-8")

    def log_command(self, cmd: Command, status: str, state: AppState) -> None:
        self._append("command", state, status=status, cmd={"type": type(cmd).__name__, **asdict(cmd)})

    def log_quit(self, state: AppState) -> None:
        self._append("quit", state, status=state.status_message, cmd=None)

    def _append(self, event: str, state: AppState, status: str, cmd: Optional[dict]) -> None:
        if self._file is None:
            return
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "status": status,
            "cmd": cmd,
            "state": state.to_dict(),
            "telemetry": state.telemetry.as_dict() if state.telemetry is not None else None,
        }
        self._file.write(json.dumps(record, ensure_ascii=True) + "\n")
        self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


def configure_logging(level: str = "INFO", log_path: Optional[str] = None) -> None:
    """Send log records to ``log_path``, or discard them.

    The console belongs to curses while the UI runs, so there is never a
    stream handler on stderr.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if log_path:
        path = Path(log_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)
    else:
        root.addHandler(logging.NullHandler())


async def run_session(
    link: SerialLink,
    draw: Callable[[AppState], None],
    poll_key: Callable[[], Awaitable[int]],
    session_log: Optional[SessionLogger] = None,
    state: Optional[AppState] = None,
) -> AppState:
    if state is None:
        state = AppState()
    commands: asyncio.Queue = asyncio.Queue(maxsize=COMMAND_QUEUE_SIZE)
    statuses: asyncio.Queue = asyncio.Queue(maxsize=STATUS_QUEUE_SIZE)
    samples: asyncio.Queue = asyncio.Queue(maxsize=TELEMETRY_QUEUE_SIZE)

    def _on_dispatched(cmd: Command, status: str) -> None:
        if session_log is not None:
            session_log.log_command(cmd, status, state)

    tasks = [
        asyncio.create_task(telemetry_reader(link, samples), name="telemetry-reader"),
        asyncio.create_task(
            command_dispatcher(link, commands, statuses, on_dispatched=_on_dispatched),
            name="command-dispatcher",
        ),
    ]
    try:
        await run_interaction_loop(state, commands, statuses, samples, draw, poll_key)
    finally:
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    if session_log is not None:
        session_log.log_quit(state)
    return state


def run_cli(args: argparse.Namespace) -> int:
    configure_logging(args.log_level, args.log_file)

    if not args.port:
        print(USAGE_HINT, file=sys.stderr)
        return 0

    session_log = SessionLogger(args.session_log)
    try:
        link = SerialLink.open(args.port)
    except serial.SerialException as exc:
        session_log.close()
        LOGGER.error("Couldn't open %s: %s", args.port, exc)
        print(f"Couldn't open {args.port}: {exc}", file=sys.stderr)
        return 0

    LOGGER.info("Session started on %s (baud=%d, protocol v%d)", args.port, BAUD_RATE, PROTOCOL_VERSION)

    try:
        with TerminalSession() as stdscr:
            draw, poll_key = curses_io(stdscr)
            asyncio.run(run_session(link, draw, poll_key, session_log))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user")
    finally:
        link.close()
        session_log.close()
        LOGGER.info("Link stats: %s", asdict(link.stats))

    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="actuator-console",
        description="Terminal controller for a two-channel linear actuator driver",
    )
    parser.add_argument("port", nargs="?", default=None, help="Serial device path, e.g. /dev/ttyACM0")
    parser.add_argument("--log-file", default=None, help="Optional path for the diagnostic log")
    parser.add_argument("--log-level", default="INFO", help="Diagnostic log level (default: INFO)")
    parser.add_argument("--session-log", default=None, help="Optional path for a JSONL log of dispatched commands")
    return parser
