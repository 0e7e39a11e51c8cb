import asyncio
import contextlib
import struct

import pytest
import serial

from actuator_console.protocol import Actuator, Direction, SetDirection, SetSpeed
from actuator_console.transport import command_dispatcher, publish_latest, telemetry_reader


async def _cancel(task: asyncio.Task) -> None:
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_reader_publishes_full_frame(make_link, wait_until) -> None:
    link, _ = make_link(reads=[struct.pack("<d", 0.42)])
    samples = asyncio.Queue(maxsize=10)

    task = asyncio.create_task(telemetry_reader(link, samples, interval_s=0))
    await wait_until(lambda: not samples.empty())
    await _cancel(task)

    sample = samples.get_nowait()
    assert sample.length_m == 0.42
    assert link.stats.rx_frames_ok == 1


@pytest.mark.asyncio
async def test_reader_discards_short_frame(make_link, wait_until) -> None:
    link, fake = make_link(reads=[b"\x01\x02\x03\x04\x05"])
    samples = asyncio.Queue(maxsize=10)

    task = asyncio.create_task(telemetry_reader(link, samples, interval_s=0))
    await wait_until(lambda: fake.read_calls >= 5)
    await _cancel(task)

    assert samples.empty()
    assert link.stats.rx_short_reads == 1
    assert link.stats.rx_frames_ok == 0


@pytest.mark.asyncio
async def test_reader_survives_io_errors(make_link, wait_until) -> None:
    link, _ = make_link(
        reads=[
            serial.SerialException("device reports readiness to read but returned no data"),
            OSError("I/O error"),
            struct.pack("<d", 1.5),
        ]
    )
    samples = asyncio.Queue(maxsize=10)

    task = asyncio.create_task(telemetry_reader(link, samples, interval_s=0))
    await wait_until(lambda: not samples.empty())
    await _cancel(task)

    assert samples.get_nowait().length_m == 1.5
    assert link.stats.rx_errors == 2


@pytest.mark.asyncio
async def test_publish_latest_drops_oldest() -> None:
    queue = asyncio.Queue(maxsize=2)
    for value in (1, 2, 3, 4):
        publish_latest(queue, value)

    assert queue.get_nowait() == 3
    assert queue.get_nowait() == 4
    assert queue.empty()


@pytest.mark.asyncio
async def test_dispatcher_writes_in_order_and_reports(make_link, wait_until) -> None:
    link, fake = make_link()
    commands = asyncio.Queue(maxsize=10)
    statuses = asyncio.Queue(maxsize=10)
    dispatched = []

    for cmd in (
        SetSpeed(1000, Actuator.PRIMARY),
        SetDirection(Direction.BACKWARD, Actuator.PRIMARY),
        SetSpeed(0, Actuator.SECONDARY),
    ):
        commands.put_nowait(cmd)

    task = asyncio.create_task(
        command_dispatcher(
            link,
            commands,
            statuses,
            pacing_s=0,
            on_dispatched=lambda cmd, status: dispatched.append((cmd, status)),
        )
    )
    await wait_until(lambda: statuses.qsize() == 3)
    await _cancel(task)

    assert fake.written == [
        bytes([0x01, 0x00, 0xE8, 0x03]),
        bytes([0x02, 0x00, 0x00]),
        bytes([0x01, 0x01, 0x00, 0x00]),
    ]
    assert [statuses.get_nowait() for _ in range(3)] == [
        "Set speed to 1000",
        "Set direction to backward",
        "Set speed to 0",
    ]
    assert [status for _, status in dispatched] == ["Set speed to 1000", "Set direction to backward", "Set speed to 0"]
    assert link.stats.tx_frames_ok == 3


@pytest.mark.asyncio
async def test_dispatcher_reports_write_error(make_link, wait_until) -> None:
    link, _ = make_link(write_error=serial.SerialException("write failed: [Errno 5] Input/output error"))
    commands = asyncio.Queue(maxsize=10)
    statuses = asyncio.Queue(maxsize=10)
    commands.put_nowait(SetSpeed(2000, Actuator.PRIMARY))
    commands.put_nowait(SetSpeed(3000, Actuator.PRIMARY))

    task = asyncio.create_task(command_dispatcher(link, commands, statuses, pacing_s=0))
    await wait_until(lambda: statuses.qsize() == 2)
    await _cancel(task)

    status = statuses.get_nowait()
    assert status.startswith("Serial error: ")
    assert "Input/output error" in status
    assert link.stats.tx_errors == 2


@pytest.mark.asyncio
async def test_partial_write_counts_as_failure(make_link, wait_until) -> None:
    link, _ = make_link(short_write=True)
    commands = asyncio.Queue(maxsize=10)
    statuses = asyncio.Queue(maxsize=10)
    commands.put_nowait(SetDirection(Direction.FORWARD, Actuator.SECONDARY))

    task = asyncio.create_task(command_dispatcher(link, commands, statuses, pacing_s=0))
    await wait_until(lambda: not statuses.empty())
    await _cancel(task)

    assert statuses.get_nowait().startswith("Serial error: Write timeout")
    assert link.stats.tx_frames_ok == 0


@pytest.mark.asyncio
async def test_link_close(make_link) -> None:
    link, fake = make_link()

    link.close()
    link.close()

    assert fake.is_open is False
    assert link.port == "/dev/fake"


@pytest.mark.asyncio
async def test_dispatcher_survives_failing_hook(make_link, wait_until) -> None:
    link, fake = make_link()
    commands = asyncio.Queue(maxsize=10)
    statuses = asyncio.Queue(maxsize=10)
    commands.put_nowait(SetSpeed(5000, Actuator.PRIMARY))
    commands.put_nowait(SetSpeed(0, Actuator.PRIMARY))

    def failing_hook(cmd, status):
        raise OSError(28, "No space left on device")

    task = asyncio.create_task(
        command_dispatcher(link, commands, statuses, pacing_s=0, on_dispatched=failing_hook)
    )
    await wait_until(lambda: statuses.qsize() == 2)

    assert not task.done()
    await _cancel(task)
    assert fake.written == [bytes([0x01, 0x00, 0x88, 0x13]), bytes([0x01, 0x00, 0x00, 0x00])]
    assert commands.empty()
