"""Tracking of spawned model CLI processes for signal delivery."""

import logging
import os
import signal

logger = logging.getLogger(__name__)

ALLOWED_SIGNALS = {
    "SIGTERM": signal.SIGTERM,
    "SIGINT": signal.SIGINT,
}


def resolve_signal(name: str | None) -> signal.Signals:
    """Map a user-supplied signal name to a signal. Defaults to SIGTERM."""
    name = (name or "SIGTERM").upper()
    if name not in ALLOWED_SIGNALS:
        raise ValueError(f"Unsupported signal: {name}. Use one of: {', '.join(ALLOWED_SIGNALS)}")
    return ALLOWED_SIGNALS[name]


class ProcessTracker:
    """PIDs of live child processes, shared by executors and the registry."""

    def __init__(self) -> None:
        self._pids: set[int] = set()

    def add(self, pid: int) -> None:
        self._pids.add(pid)

    def discard(self, pid: int) -> None:
        self._pids.discard(pid)

    def __contains__(self, pid: object) -> bool:
        return pid in self._pids

    def __len__(self) -> int:
        return len(self._pids)

    def send_signal(self, pid: int | None, sig: signal.Signals) -> bool:
        """Best-effort signal delivery to a tracked process.

        Returns True if the signal was sent. Untracked pids and processes
        that already exited are ignored.
        """
        if pid is None or pid not in self._pids:
            return False
        try:
            os.kill(pid, sig)
        except OSError as e:
            logger.debug(f"Could not signal pid {pid}: {e}")
            return False
        return True
