"""Command-line KVM client.

Connects to a device, prints notices and latency samples, and types every
line read from stdin on the remote machine.

    python -m kvm_client --url http://kvm.local

    # Lines starting with "/key" send a key combination instead:
    /key ctrl+alt+delete
    /key enter
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from .client import KVMClient
from .types import ClientConfig, Severity


def parse_key_command(combo: str) -> tuple[list[str], list[str]]:
    """Split ``"ctrl+alt+delete"`` into modifiers and keys."""
    parts = [p.strip().lower() for p in combo.split("+") if p.strip()]
    modifiers = [p for p in parts if p in ("ctrl", "shift", "alt", "meta")]
    keys = [p for p in parts if p not in modifiers]
    return modifiers, keys


def _print_notice(message: str, severity: Severity) -> None:
    print(f"[{severity.value}] {message}")


def _print_latency(latency: float | None) -> None:
    print(f"latency: {'--' if latency is None else f'{latency:.0f}'}ms")


async def _forward_stdin(client: KVMClient) -> None:
    reader = asyncio.StreamReader()
    loop = asyncio.get_running_loop()
    await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader), sys.stdin
    )
    while True:
        raw = await reader.readline()
        if not raw:
            return
        line = raw.decode(errors="replace").rstrip("\r\n")
        if line.startswith("/key "):
            modifiers, keys = parse_key_command(line[5:])
            if keys:
                client.input.key_combination(modifiers, keys)
        else:
            client.input.text(line)


async def main(config: ClientConfig, *, video: bool) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    async with KVMClient(
        config,
        notifier=_print_notice,
        on_latency=_print_latency,
        video=video,
    ) as client:
        print(f"Connecting to {config.ws_url}")
        reader = asyncio.create_task(_forward_stdin(client))
        stopper = asyncio.create_task(stop.wait())
        await asyncio.wait({reader, stopper}, return_when=asyncio.FIRST_COMPLETED)
        stopper.cancel()
        reader.cancel()
        # pending input still goes out if the channel is open
        await client.session.flush()


def run() -> None:
    parser = argparse.ArgumentParser(description="IP-KVM control client")
    parser.add_argument("--url", default="http://localhost", help="Device HTTP origin")
    parser.add_argument(
        "--latency-mode",
        choices=("elapsed", "echo"),
        default="elapsed",
    )
    parser.add_argument("--no-video", action="store_true", help="Skip the video watchdog")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    cfg = ClientConfig.from_base_url(args.url, latency_mode=args.latency_mode)
    asyncio.run(main(cfg, video=not args.no_video))


if __name__ == "__main__":
    run()
