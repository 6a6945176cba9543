from collections import deque
from typing import Deque

from microsim.kernel.commands import Command


class CommandQueue:
    """Host commands waiting for the start of the next tick (step 0)."""

    def __init__(self):
        self._pending: Deque[Command] = deque()

    def add(self, command: Command):
        self._pending.append(command)

    def pop_all(self) -> Deque[Command]:
        """Detach everything queued so far; commands queued meanwhile wait a tick."""
        commands, self._pending = self._pending, deque()
        return commands

    def clear(self):
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)
