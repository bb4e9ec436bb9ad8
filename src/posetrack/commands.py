"""
Command sources driving the orchestrator's state machine.

A command source is polled once per cycle. ``poll`` also carries the
inter-frame delay, so a keyboard source can wait on ``cv2.waitKey`` while a
scripted source replays a fixed schedule.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Iterable, Iterator, Optional, Protocol, Union

import cv2


class Command(Enum):
    DETECT = "detect"
    DETECT_AND_TRACK = "detect_and_track"
    TRACK = "track"
    STOP = "stop"
    QUIT = "quit"


KEY_COMMANDS = {
    "d": Command.DETECT,
    "x": Command.DETECT_AND_TRACK,
    "t": Command.TRACK,
    "s": Command.STOP,
    "q": Command.QUIT,
}

COMMAND_HELP = "Wait for key: (d/x: Detection, t: tracking, s: stop, q: quit)"


def parse_command(key: Union[str, Command, None]) -> Optional[Command]:
    if key is None or isinstance(key, Command):
        return key
    return KEY_COMMANDS.get(key.strip().lower())


class CommandSource(Protocol):
    def poll(self, timeout_ms: int) -> Optional[Command]: ...


class ScriptedCommandSource:
    """
    Fixed per-cycle schedule of commands.

    Entries may be Command values, single-character keys or None (no command
    that cycle). Once the schedule is exhausted every poll returns QUIT.
    """

    def __init__(self, commands: Iterable[Union[Command, str, None]] = (), sleep: bool = False):
        self._commands: Iterator[Union[Command, str, None]] = iter(commands)
        self.sleep = sleep
        self.poll_count = 0

    def poll(self, timeout_ms: int) -> Optional[Command]:
        self.poll_count += 1
        if self.sleep and timeout_ms > 0:
            time.sleep(timeout_ms / 1000.0)
        try:
            entry = next(self._commands)
        except StopIteration:
            return Command.QUIT
        return parse_command(entry)


class KeyboardCommandSource:
    """Single keystrokes read from the OpenCV display windows."""

    def poll(self, timeout_ms: int) -> Optional[Command]:
        key = cv2.waitKey(max(1, int(timeout_ms)))
        if key < 0:
            return None
        return parse_command(chr(key & 0xFF))
