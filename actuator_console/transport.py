from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import serial

from .protocol import TELEMETRY_FRAME_SIZE, Command, describe_command, encode_command
from .telemetry import ActuatorTelemetry

LOGGER = logging.getLogger(__name__)

BAUD_RATE = 9600
READ_TIMEOUT_S = 0.05
READ_INTERVAL_S = 0.01
DISPATCH_PACING_S = 0.05

COMMAND_QUEUE_SIZE = 100
STATUS_QUEUE_SIZE = 100
TELEMETRY_QUEUE_SIZE = 10


@dataclass(slots=True)
class LinkStats:
    tx_frames_ok: int = 0
    tx_errors: int = 0
    rx_frames_ok: int = 0
    rx_short_reads: int = 0
    rx_errors: int = 0


class SerialLink:
    """Owns the serial port and serializes every read and write on it.

    The telemetry reader and the command dispatcher both hold long-lived
    references to one link; a single lock keeps one frame's bytes from being
    interleaved with another's.
    """

    def __init__(self, ser: serial.Serial) -> None:
        self._serial = ser
        self._lock = asyncio.Lock()
        self.stats = LinkStats()

    @classmethod
    def open(cls, port: str, baud: int = BAUD_RATE) -> "SerialLink":
        ser = serial.Serial(
            port=port,
            baudrate=baud,
            timeout=READ_TIMEOUT_S,
            write_timeout=0,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
        )
        ser.reset_input_buffer()
        ser.reset_output_buffer()
        LOGGER.info("Opened %s at %d baud", port, baud)
        return cls(ser)

    @property
    def port(self) -> Optional[str]:
        return getattr(self._serial, "port", None)

    async def read_frame(self, size: int) -> bytes:
        """Read one frame of ``size`` bytes.

        The result is shorter than ``size`` (possibly empty) when the port
        times out first; callers must check the length before decoding.
        """
        # exclusive only while awaited: cancelling the caller releases the lock
        # while the worker thread may still be inside serial.read
        async with self._lock:
            try:
                data = await asyncio.to_thread(self._serial.read, size)
            except (serial.SerialException, OSError):
                self.stats.rx_errors += 1
                raise

        if len(data) == size:
            self.stats.rx_frames_ok += 1
        elif data:
            self.stats.rx_short_reads += 1
        return bytes(data)

    async def try_write(self, payload: bytes) -> None:
        """Write ``payload`` without blocking; a partial write is an error."""
        async with self._lock:
            try:
                written = self._serial.write(payload)
                if written is not None and written < len(payload):
                    raise serial.SerialTimeoutException(
                        f"Write timeout ({written}/{len(payload)} bytes)"
                    )
            except (serial.SerialException, OSError):
                self.stats.tx_errors += 1
                raise
            self.stats.tx_frames_ok += 1

    def close(self) -> None:
        if self._serial.is_open:
            self._serial.close()


def publish_latest(queue: asyncio.Queue, item) -> None:
    """Put ``item`` on ``queue``, evicting the oldest entry when it is full."""
    while True:
        try:
            queue.put_nowait(item)
            return
        except asyncio.QueueFull:
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                pass


async def telemetry_reader(
    link: SerialLink,
    samples: asyncio.Queue,
    interval_s: float = READ_INTERVAL_S,
) -> None:
    while True:
        await asyncio.sleep(interval_s)
        try:
            frame = await link.read_frame(TELEMETRY_FRAME_SIZE)
        except (serial.SerialException, OSError) as exc:
            LOGGER.debug("Telemetry read failed: %s", exc)
            continue

        # partial frames are line noise; drop them without telling the operator
        if len(frame) != TELEMETRY_FRAME_SIZE:
            if frame:
                LOGGER.debug("Discarded short telemetry read (%d bytes)", len(frame))
            continue

        publish_latest(samples, ActuatorTelemetry.from_frame(frame))


async def command_dispatcher(
    link: SerialLink,
    commands: asyncio.Queue,
    statuses: asyncio.Queue,
    pacing_s: float = DISPATCH_PACING_S,
    on_dispatched: Optional[Callable[[Command, str], None]] = None,
) -> None:
    while True:
        cmd = await commands.get()
        frame = encode_command(cmd)
        try:
            await link.try_write(frame)
        except (serial.SerialException, OSError) as exc:
            LOGGER.warning("Failed to write %s: %s", cmd, exc)
            status = f"Serial error: {exc}"
        else:
            LOGGER.debug("[TX] %s", frame.hex(" "))
            status = describe_command(cmd)

        await statuses.put(status)
        if on_dispatched is not None:
            try:
                on_dispatched(cmd, status)
            except Exception:
                LOGGER.exception("Dispatch hook failed for %s", cmd)
        commands.task_done()

        await asyncio.sleep(pacing_s)
