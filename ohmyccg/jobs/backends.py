"""Backend strategies for the external model CLIs.

Each strategy knows how to build the command line for one CLI, how to pull
the answer out of its output, and which models to fall back to.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)

GEMINI_FALLBACK_CHAIN = (
    "gemini-3-pro-preview",
    "gemini-3-flash-preview",
    "gemini-2.5-pro",
    "gemini-2.5-flash",
)

# Event item types that carry assistant-authored text
ASSISTANT_ITEM_TYPES = {"agent_message", "assistant_message", "message"}


def _assistant_text(event: dict[str, Any]) -> tuple[str, bool] | None:
    """Extract ``(text, is_delta)`` from one structured event, if any."""
    # {"type": "item.completed", "item": {"type": "agent_message", "text": ...}}
    item = event.get("item")
    if isinstance(item, dict) and item.get("type") in ASSISTANT_ITEM_TYPES:
        text = item.get("text")
        if isinstance(text, str):
            return text, False

    # {"msg": {"type": "agent_message", "message": ...}}
    msg = event.get("msg")
    if isinstance(msg, dict) and msg.get("type") in ASSISTANT_ITEM_TYPES:
        text = msg.get("message")
        if isinstance(text, str):
            return text, False

    # {"type": "message", "role": "assistant", "content": ..., "delta": true}
    if event.get("role") == "assistant":
        content = event.get("content")
        if isinstance(content, str):
            return content, bool(event.get("delta"))

    return None


def extract_last_message(output: str) -> str:
    """Last assistant message from a newline-delimited JSON event stream.

    Lines that are not JSON objects are skipped. Streamed deltas are joined.
    Falls back to the raw trimmed output when no message is found.
    """
    last: str | None = None
    streaming = False

    for line in output.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(event, dict):
            continue

        found = _assistant_text(event)
        if found is None:
            continue
        text, is_delta = found
        if is_delta and streaming and last is not None:
            last += text
        else:
            last = text
        streaming = is_delta

    if last is not None and last.strip():
        return last.strip()
    return output.strip()


class BackendStrategy(ABC):
    """Command-line builder, output parser and fallback policy for one CLI."""

    name: str = ""
    display_name: str = ""
    fallback_chain: tuple[str, ...] = ()

    def __init__(self, executable: str | None = None) -> None:
        self.executable = executable or self.default_executable()

    @abstractmethod
    def default_executable(self) -> str:
        pass

    @abstractmethod
    def build_command(self, model: str, workdir: str) -> list[str]:
        """Argument vector for one run. The prompt is sent on stdin."""
        pass

    def parse_output(self, stdout: str) -> str:
        return extract_last_message(stdout)

    def model_chain(self, requested: str) -> list[str]:
        """Models to try, in order, for a requested model.

        Starts at the requested model's position in the fallback chain, or
        prepends it when it is not part of the chain.
        """
        if not self.fallback_chain:
            return [requested]
        if requested in self.fallback_chain:
            return list(self.fallback_chain[self.fallback_chain.index(requested):])
        return [requested, *self.fallback_chain]


class GeminiBackend(BackendStrategy):
    """Gemini CLI in non-interactive mode with a model fallback chain."""

    name = "gemini"
    display_name = "Gemini"
    fallback_chain = GEMINI_FALLBACK_CHAIN

    def default_executable(self) -> str:
        return "gemini"

    def build_command(self, model: str, workdir: str) -> list[str]:
        cmd = [self.executable, "-p", ".", "--yolo"]
        if model:
            cmd.extend(["--model", model])
        return cmd

    def parse_output(self, stdout: str) -> str:
        # Plain text output
        return stdout.strip()


class CodexBackend(BackendStrategy):
    """Codex CLI ``exec`` with JSON event output. Single model, no fallback."""

    name = "codex"
    display_name = "Codex"

    def default_executable(self) -> str:
        return "codex"

    def build_command(self, model: str, workdir: str) -> list[str]:
        cmd = [self.executable, "exec", "--json", "--skip-git-repo-check"]
        if model:
            cmd.extend(["--model", model])
        cmd.extend(["-C", workdir, "-"])
        return cmd
