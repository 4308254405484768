"""Shared fakes and fixtures for the Tinyphone event client tests."""

import asyncio

import pytest

from tinyphone_events.config import TinyphoneSettings
from tinyphone_events.types import Fragment, FrameKind


class FakeTransport:
    """In-memory stand-in for WebSocketTransport.

    Tests push fragments (or exceptions) that the receive cycle then reads.
    """

    def __init__(self, *, fail_close: bool = False, fail_send: bool = False) -> None:
        self.sent: list[str] = []
        self.close_calls: list[tuple[int, str]] = []
        self.open = True
        self.fail_close = fail_close
        self.fail_send = fail_send
        self._inbox: asyncio.Queue = asyncio.Queue()

    @property
    def is_open(self) -> bool:
        return self.open

    def push(self, fragment: Fragment) -> None:
        self._inbox.put_nowait(fragment)

    def push_text(self, text: str, chunks: int = 1) -> None:
        """Queue *text* as one logical message split into *chunks* fragments."""
        data = text.encode("utf-8")
        size = max(1, -(-len(data) // chunks))
        for start in range(0, len(data), size):
            self.push(Fragment(FrameKind.TEXT, data[start : start + size]))
        self.push(Fragment(FrameKind.TEXT, final=True))

    def push_close(self, code: int = 1000, reason: str = "") -> None:
        self.push(Fragment(FrameKind.CLOSE, final=True, close_code=code, close_reason=reason))

    def push_error(self, exc: BaseException) -> None:
        self._inbox.put_nowait(exc)

    async def fragments(self):
        while True:
            item = await self._inbox.get()
            if isinstance(item, BaseException):
                self.open = False
                raise item
            if item.kind is FrameKind.CLOSE:
                self.open = False
            yield item
            if item.kind is FrameKind.CLOSE:
                return

    async def send(self, text: str) -> None:
        if self.fail_send:
            raise ConnectionResetError("peer went away")
        self.sent.append(text)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        self.open = False
        if self.fail_close:
            raise OSError("close handshake failed")


class FakeServer:
    """Transport factory handing out FakeTransports.

    ``fail_next`` makes that many upcoming connect attempts fail; ``hang``
    makes connect attempts wait forever, like an unresponsive host.
    """

    def __init__(self) -> None:
        self.urls: list[str] = []
        self.transports: list[FakeTransport] = []
        self.fail_next = 0
        self.error: Exception = ConnectionRefusedError("connection refused")
        self.fail_close = False
        self.hang = False

    async def __call__(self, url: str, settings: TinyphoneSettings) -> FakeTransport:
        self.urls.append(url)
        if self.hang:
            await asyncio.Event().wait()
        if self.fail_next > 0:
            self.fail_next -= 1
            raise self.error
        transport = FakeTransport(fail_close=self.fail_close)
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll *predicate* until true or fail the test after *timeout*."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture()
def fake_server():
    return FakeServer()


@pytest.fixture()
def settings():
    return TinyphoneSettings(base_url="http://tinyphone.test:6060", reconnect_delay=0.05)
