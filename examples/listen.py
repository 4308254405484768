"""Print Tinyphone events to the terminal.

Connects to a Tinyphone server's event stream, reconnecting whenever the
connection drops, and prints account, call and welcome notifications.

    pip install tinyphone-events

    python examples/listen.py --base-url http://localhost:6060
    python examples/listen.py --raw -v
"""

import argparse
import asyncio
import logging
import signal

from tinyphone_events import EventKind, TinyphoneSettings, connect


async def main(base_url: str | None, show_raw: bool):
    settings = TinyphoneSettings.from_env()
    if base_url:
        settings.base_url = base_url

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with connect(settings.base_url, settings=settings) as client:
        print(f"Listening on {client.url} (Ctrl+C to stop)\n")

        while not stop.is_set():
            try:
                event = await client.recv(timeout=1.0)
            except asyncio.TimeoutError:
                continue

            if event.kind is EventKind.STATUS:
                print(f"[status] {event.payload.previous.value} -> {event.payload.current.value}")
            elif event.kind is EventKind.ACCOUNT:
                print(f"[account] {event.payload.account}: {event.payload.status}")
            elif event.kind is EventKind.CALL:
                call = event.payload
                print(f"[call] {call.id} {call.state} {call.direction} {call.party}".rstrip())
            elif event.kind is EventKind.WELCOME:
                print(f"[welcome] {event.payload.message}")
            elif event.kind is EventKind.ERROR:
                print(f"[error] {event.payload}")
            elif show_raw:
                print(f"[raw #{event.sequence}] {event.payload}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Tinyphone event listener")
    parser.add_argument("--base-url", help="Tinyphone API address (default: $TINYPHONE_BASE_URL)")
    parser.add_argument("--raw", action="store_true", help="Also print raw message text")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    asyncio.run(main(args.base_url, args.raw))
