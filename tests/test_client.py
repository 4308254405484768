"""Tests for AsyncTinyphoneClient: reconnection loop, events, lifecycle."""

import asyncio
import json
from dataclasses import replace

import pytest

from tests.conftest import wait_until
from tinyphone_events import AsyncTinyphoneClient, connect
from tinyphone_events.errors import (
    TinyphoneConnectionError,
    TinyphoneDisposedError,
    TinyphoneNotConnectedError,
    TinyphoneReceiveError,
    TinyphoneTimeoutError,
)
from tinyphone_events.types import (
    AccountEvent,
    ConnectionStatus,
    EventKind,
)

ACCOUNT_TEXT = '{"type":"ACCOUNT","account":"alice","status":"REGISTERED"}'


@pytest.fixture
def client(settings, fake_server):
    return AsyncTinyphoneClient(settings=settings, transport_factory=fake_server)


async def _started(client, fake_server, count: int = 1):
    client.start()
    await wait_until(lambda: len(fake_server.transports) >= count and client.is_connected)


def _statuses(events):
    return [e.payload.current for e in events if e.kind is EventKind.STATUS]


class TestClientDefaults:
    def test_base_url_overrides_settings(self, settings):
        client = AsyncTinyphoneClient("https://tp.example:7000/api/", settings=settings)
        assert client.url == "wss://tp.example:7000/api/events"
        assert client.settings.reconnect_delay == settings.reconnect_delay

    def test_default_endpoint(self):
        client = AsyncTinyphoneClient()
        assert client.url == "ws://localhost:6060/events"
        assert client.status == ConnectionStatus.DISCONNECTED
        assert client.is_connected is False
        assert client.is_running is False

    def test_invalid_base_url_rejected(self):
        with pytest.raises(ValueError):
            AsyncTinyphoneClient("ftp://example.com")

    def test_connect_helper(self, settings):
        client = connect("http://10.0.0.5:6060", settings=settings)
        assert isinstance(client, AsyncTinyphoneClient)
        assert client.url == "ws://10.0.0.5:6060/events"

    def test_initial_stats(self, client):
        stats = client.get_stats()
        assert stats["status"] == "disconnected"
        assert stats["messages_received"] == 0
        assert stats["reconnect_count"] == 0
        assert stats["connected_for"] is None


class TestEventFlow:
    @pytest.mark.asyncio
    async def test_account_message_yields_raw_and_one_account_event(self, client, fake_server):
        events = []
        client.on_any(events.append)
        await _started(client, fake_server)

        fake_server.last.push_text(ACCOUNT_TEXT, chunks=4)
        await wait_until(lambda: any(e.kind is EventKind.ACCOUNT for e in events))
        await client.close()

        raw = [e for e in events if e.kind is EventKind.RAW]
        accounts = [e for e in events if e.kind is EventKind.ACCOUNT]
        assert [e.payload for e in raw] == [ACCOUNT_TEXT]
        assert accounts[0].payload == AccountEvent(account="alice", status="REGISTERED")
        assert len(accounts) == 1
        assert not any(e.kind in (EventKind.CALL, EventKind.WELCOME) for e in events)

    @pytest.mark.asyncio
    async def test_welcome_then_call(self, client, fake_server):
        kinds = []
        client.on_any(lambda e: kinds.append(e.kind))
        await _started(client, fake_server)

        fake_server.last.push_text('{"subcription": true, "message": "Welcome"}')
        fake_server.last.push_text(json.dumps({"type": "CALL", "id": 4, "state": "CALLING"}))
        await wait_until(lambda: EventKind.CALL in kinds)
        await client.close()

        typed = [k for k in kinds if k not in (EventKind.STATUS, EventKind.RAW)]
        assert typed == [EventKind.WELCOME, EventKind.CALL]

    @pytest.mark.asyncio
    async def test_unclassified_message_only_raw(self, client, fake_server):
        events = []
        client.on_any(events.append)
        await _started(client, fake_server)

        fake_server.last.push_text("not json")
        fake_server.last.push_text(ACCOUNT_TEXT)
        await wait_until(lambda: any(e.kind is EventKind.ACCOUNT for e in events))
        await client.close()

        raw = [e.payload for e in events if e.kind is EventKind.RAW]
        assert raw == ["not json", ACCOUNT_TEXT]

    @pytest.mark.asyncio
    async def test_kind_handler(self, client, fake_server):
        statuses = []

        @client.on(EventKind.ACCOUNT)
        async def on_account(event):
            statuses.append(event.payload.status)

        await _started(client, fake_server)
        fake_server.last.push_text(ACCOUNT_TEXT)
        await wait_until(lambda: statuses == ["REGISTERED"])
        await client.close()

    @pytest.mark.asyncio
    async def test_async_iteration_ends_after_close(self, client, fake_server):
        await _started(client, fake_server)
        fake_server.last.push_text(ACCOUNT_TEXT)
        await wait_until(lambda: client.stats.messages_received == 1)
        await client.close()

        events = [event async for event in client]
        kinds = [e.kind for e in events]
        assert EventKind.RAW in kinds
        assert EventKind.ACCOUNT in kinds
        assert _statuses(events)[-1] == ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_recv_after_close_raises(self, client):
        await client.close()
        while True:
            try:
                await client.recv(timeout=1.0)
            except TinyphoneNotConnectedError:
                break

    @pytest.mark.asyncio
    async def test_stats_counted(self, client, fake_server):
        await _started(client, fake_server)
        fake_server.last.push_text(ACCOUNT_TEXT)
        await wait_until(lambda: client.stats.messages_received == 1)
        await client.send("ping")

        stats = client.get_stats()
        assert stats["status"] == "connected"
        assert stats["bytes_received"] == len(ACCOUNT_TEXT)
        assert stats["messages_sent"] == 1
        assert stats["bytes_sent"] == 4
        assert stats["connected_for"] >= 0
        assert fake_server.last.sent == ["ping"]
        await client.close()


class TestReconnection:
    @pytest.mark.asyncio
    async def test_status_sequence_on_connect(self, client, fake_server):
        events = []
        client.on_any(events.append)
        await _started(client, fake_server)
        assert _statuses(events) == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]
        await client.close()

    @pytest.mark.asyncio
    async def test_mid_stream_drop_reconnects(self, client, fake_server):
        events = []
        client.on_any(events.append)
        await _started(client, fake_server)

        first = fake_server.last
        first.push_error(ConnectionResetError("reset by peer"))
        await _started(client, fake_server, count=2)

        assert len(fake_server.urls) == 2
        assert first.close_calls == []
        assert _statuses(events) == [
            ConnectionStatus.CONNECTING,
            ConnectionStatus.CONNECTED,
            ConnectionStatus.RECONNECTING,
            ConnectionStatus.CONNECTING,
            ConnectionStatus.CONNECTED,
        ]
        errors = [e.payload for e in events if e.kind is EventKind.ERROR]
        assert len(errors) == 1
        assert isinstance(errors[0], TinyphoneReceiveError)
        assert client.stats.reconnect_count == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_server_close_reconnects(self, client, fake_server):
        await _started(client, fake_server)
        fake_server.last.push_close(1001, "going away")
        await _started(client, fake_server, count=2)
        assert len(fake_server.urls) == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_messages_after_reconnect_delivered(self, client, fake_server):
        accounts = []
        client.on(EventKind.ACCOUNT)(accounts.append)
        await _started(client, fake_server)
        fake_server.last.push_close()
        await _started(client, fake_server, count=2)

        fake_server.last.push_text(ACCOUNT_TEXT)
        await wait_until(lambda: len(accounts) == 1)
        await client.close()

    @pytest.mark.asyncio
    async def test_connect_failures_retry_until_success(self, client, fake_server):
        errors = []
        client.on(EventKind.ERROR)(errors.append)
        fake_server.fail_next = 2
        await _started(client, fake_server)

        assert len(fake_server.urls) == 3
        assert client.status == ConnectionStatus.CONNECTED
        assert client.stats.connect_failures == 2
        # each failed attempt reported once
        assert len(errors) == 2
        assert all(isinstance(e.payload, TinyphoneConnectionError) for e in errors)
        await client.close()

    @pytest.mark.asyncio
    async def test_stop_interrupts_reconnect_wait(self, settings, fake_server):
        client = AsyncTinyphoneClient(
            settings=replace(settings, reconnect_delay=30.0),
            transport_factory=fake_server,
        )
        fake_server.fail_next = 100
        client.start()
        await wait_until(lambda: client.status == ConnectionStatus.RECONNECTING)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await asyncio.wait_for(client.close(), timeout=2.0)
        assert loop.time() - started < 1.0
        assert client.status == ConnectionStatus.DISCONNECTED
        assert len(fake_server.urls) == 1

    @pytest.mark.asyncio
    async def test_stop_while_receiving(self, client, fake_server):
        task = client.start()
        await wait_until(lambda: client.is_connected)
        client.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert client.status == ConnectionStatus.DISCONNECTED
        assert fake_server.last.close_calls == [(1000, "Client disconnect")]
        assert client.is_running is False

    @pytest.mark.asyncio
    async def test_run_again_after_stop(self, client, fake_server):
        task = client.start()
        await wait_until(lambda: client.is_connected)
        client.stop()
        await task

        await _started(client, fake_server, count=2)
        assert client.status == ConnectionStatus.CONNECTED
        await client.close()


    @pytest.mark.asyncio
    async def test_disconnect_ends_reconnection_loop(self, client, fake_server):
        events = []
        client.on_any(events.append)
        task = client.start()
        await wait_until(lambda: client.is_connected)

        await asyncio.wait_for(client.disconnect(), timeout=1.0)
        await asyncio.sleep(0.2)

        assert task.done()
        assert client.is_running is False
        assert client.status == ConnectionStatus.DISCONNECTED
        assert len(fake_server.urls) == 1
        assert _statuses(events) == [
            ConnectionStatus.CONNECTING,
            ConnectionStatus.CONNECTED,
            ConnectionStatus.DISCONNECTED,
        ]

    @pytest.mark.asyncio
    async def test_disconnect_ends_directly_awaited_run(self, client, fake_server):
        runner = asyncio.create_task(client.run())
        await wait_until(lambda: client.is_connected)
        assert client.is_running

        await asyncio.wait_for(client.disconnect(), timeout=1.0)
        assert runner.done()
        await asyncio.sleep(0.2)
        assert client.status == ConnectionStatus.DISCONNECTED
        assert len(fake_server.urls) == 1

    @pytest.mark.asyncio
    async def test_stop_interrupts_pending_connect(self, client, fake_server):
        fake_server.hang = True
        client.start()
        await wait_until(lambda: client.status == ConnectionStatus.CONNECTING)

        await asyncio.wait_for(client.close(), timeout=1.0)
        assert client.status == ConnectionStatus.DISCONNECTED
        assert len(fake_server.urls) == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_stop_before_start_is_ignored(self, client, fake_server):
        client.stop()
        client.stop()
        await _started(client, fake_server)
        assert len(fake_server.urls) == 1
        await client.close()

    @pytest.mark.asyncio
    async def test_stop_after_loop_ended_is_ignored(self, client, fake_server):
        task = client.start()
        await wait_until(lambda: client.is_connected)
        client.stop()
        await task
        client.stop()

        await _started(client, fake_server, count=2)
        assert client.status == ConnectionStatus.CONNECTED
        await client.close()

    @pytest.mark.asyncio
    async def test_context_manager(self, settings, fake_server):
        async with AsyncTinyphoneClient(
            settings=settings, transport_factory=fake_server
        ) as client:
            await client.wait_connected(timeout=1.0)
            assert client.is_running
        assert client.status == ConnectionStatus.DISCONNECTED
        assert client.is_running is False

    @pytest.mark.asyncio
    async def test_run_after_close_raises(self, client):
        await client.close()
        with pytest.raises(TinyphoneDisposedError):
            await client.run()
        with pytest.raises(TinyphoneDisposedError):
            client.start()

    @pytest.mark.asyncio
    async def test_send_after_close_raises(self, client):
        await client.close()
        with pytest.raises(TinyphoneDisposedError):
            await client.send("ping")

    @pytest.mark.asyncio
    async def test_send_before_connect_raises(self, client, fake_server):
        with pytest.raises(TinyphoneNotConnectedError):
            await client.send("ping")
        assert fake_server.transports == []

    @pytest.mark.asyncio
    async def test_wait_connected_timeout(self, client, fake_server):
        fake_server.fail_next = 100
        client.start()
        with pytest.raises(TinyphoneTimeoutError):
            await client.wait_connected(timeout=0.05)
        await client.close()

    @pytest.mark.asyncio
    async def test_manual_connect_and_disconnect(self, client, fake_server):
        await client.connect()
        assert client.is_connected
        await client.disconnect()
        assert client.status == ConnectionStatus.DISCONNECTED
        assert fake_server.last.close_calls

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, client, fake_server):
        await _started(client, fake_server)
        await client.close()
        await client.close()
        assert client.status == ConnectionStatus.DISCONNECTED
