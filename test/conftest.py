import asyncio

import pytest

from actuator_console.transport import SerialLink


class FakeSerial:
    """Stand-in for ``serial.Serial`` fed with scripted reads."""

    def __init__(self, reads=None, write_error=None, short_write=False):
        self.port = "/dev/fake"
        self.is_open = True
        self._reads = list(reads or [])
        self.read_calls = 0
        self.written = []
        self.write_error = write_error
        self.short_write = short_write

    def read(self, size):
        self.read_calls += 1
        if not self._reads:
            return b""
        item = self._reads.pop(0)
        if isinstance(item, Exception):
            raise item
        return item[:size]

    def write(self, payload):
        if self.write_error is not None:
            raise self.write_error
        if self.short_write:
            return len(payload) - 1
        self.written.append(bytes(payload))
        return len(payload)

    def close(self):
        self.is_open = False


@pytest.fixture
def make_link():
    def factory(**kwargs):
        fake = FakeSerial(**kwargs)
        return SerialLink(fake), fake

    return factory


@pytest.fixture
def wait_until():
    async def _wait(predicate, timeout_s=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.001)

    return _wait
