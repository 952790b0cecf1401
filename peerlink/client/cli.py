"""Terminal peer: start or join a call from the command line."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import threading
from typing import Any, TextIO

from aiortc.mediastreams import MediaStreamError

from peerlink.client.media import PlayerMediaSource
from peerlink.client.peer import AiortcPeerLink
from peerlink.client.relay_client import RelayClient
from peerlink.client.session import CallSession, SessionObserver
from peerlink.client.session_ids import SessionIdMemory, session_id_from_link
from peerlink.core.config import ClientConfig, get_client_config
from peerlink.core.exceptions import AppError
from peerlink.core.logging import configure_logging
from peerlink.models import ConnectionState, MediaState

logger = logging.getLogger("peerlink.cli")

_HELP = "commands: m = toggle mute, v = toggle camera, q = hang up"


class DrainSurface:
    """Consume remote tracks so their frames keep flowing."""

    def __init__(self) -> None:
        self._tasks: list[asyncio.Task] = []

    def attach(self, track: Any) -> None:
        self._tasks.append(asyncio.ensure_future(self._drain(track)))

    async def _drain(self, track: Any) -> None:
        frames = 0
        try:
            while True:
                await track.recv()
                frames += 1
        except MediaStreamError:
            logger.info("Remote %s track ended after %d frames", track.kind, frames)

    def detach(self) -> None:
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()


class ConsoleObserver(SessionObserver):
    def __init__(self, finished: asyncio.Event) -> None:
        self._finished = finished

    def on_state_change(self, previous: ConnectionState, current: ConnectionState) -> None:
        print(f"[{current.value}]")
        if current is ConnectionState.IDLE and previous is not ConnectionState.IDLE:
            self._finished.set()

    def on_error(self, message: str) -> None:
        print(f"error: {message}", file=sys.stderr)

    def on_warning(self, message: str) -> None:
        print(f"warning: {message}", file=sys.stderr)

    def on_remote_media_state(self, state: MediaState) -> None:
        print(f"peer: muted={state.audio_muted} camera_off={state.video_off}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Start or join a peer-to-peer call.")
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--room", help="Session id to create (joins when it already has an offer)")
    target.add_argument("--join", help="Session id or share link to join")
    parser.add_argument("--relay", help="Relay base URL (overrides the config file)")
    parser.add_argument("--video", help="Video source passed to aiortc MediaPlayer")
    parser.add_argument("--audio", help="Audio source passed to aiortc MediaPlayer")
    parser.add_argument("--log-level", default=None, help="Logging level")
    return parser


def _apply_overrides(config: ClientConfig, args: argparse.Namespace) -> ClientConfig:
    update: dict[str, Any] = {}
    if args.relay:
        update["relay_url"] = args.relay
    if args.video:
        update["video_source"] = args.video
    if args.audio:
        update["audio_source"] = args.audio
    if args.log_level:
        update["log_level"] = args.log_level
    return config.model_copy(update=update)


class LineReader:
    """Feed lines from a blocking stream into the running loop.

    The read happens on a daemon thread, so a pending read never holds up
    loop shutdown once the call has ended.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdin
        self._loop = asyncio.get_running_loop()
        self._lines: asyncio.Queue[str] = asyncio.Queue()
        self._thread = threading.Thread(target=self._pump, name="peerlink-stdin", daemon=True)
        self._thread.start()

    def _pump(self) -> None:
        for line in iter(self._stream.readline, ""):
            if not self._deliver(line):
                return
        self._deliver("")

    def _deliver(self, line: str) -> bool:
        try:
            self._loop.call_soon_threadsafe(self._lines.put_nowait, line)
        except RuntimeError:
            # loop already closed
            return False
        return True

    async def readline(self) -> str:
        return await self._lines.get()


async def _read_commands(session: CallSession, finished: asyncio.Event, lines: LineReader) -> None:
    print(_HELP)
    while not finished.is_set():
        line = await lines.readline()
        if not line:
            return
        command = line.strip().lower()
        if command == "m":
            muted = session.toggle_mute()
            print("no audio track" if muted is None else f"muted={muted}")
        elif command == "v":
            off = session.toggle_video()
            print("no video track" if off is None else f"camera_off={off}")
        elif command == "q":
            await session.end_call()
            return
        elif command:
            print(_HELP)


async def run_call(config: ClientConfig, *, room: str | None, join: str | None) -> int:
    finished = asyncio.Event()
    async with RelayClient(config.relay_url, timeout=config.request_timeout) as relay:
        session = CallSession(
            relay,
            PlayerMediaSource(config),
            AiortcPeerLink.factory(config.ice_servers),
            timings=config.timings,
            app_url=config.app_url,
            id_memory=SessionIdMemory(config.state_file),
            observer=ConsoleObserver(finished),
            remote_surface=DrainSurface(),
        )
        async with session:
            try:
                if join:
                    await session.join_call(session_id_from_link(join) or join)
                else:
                    await session.start_call(room)
            except AppError as exc:
                logger.error("Call could not start: %s", exc.detail)
                return 1
            if session.share_link:
                print(f"share: {session.share_link}")
            commands = asyncio.create_task(_read_commands(session, finished, LineReader()))
            try:
                await finished.wait()
            finally:
                commands.cancel()
    return 0 if not session.error else 1


def main() -> int:
    args = _build_parser().parse_args()
    config = _apply_overrides(get_client_config(), args)
    configure_logging(config.log_level)
    try:
        return asyncio.run(run_call(config, room=args.room, join=args.join))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
