"""Prompt assembly for external model CLIs."""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# Context files above this size are skipped
MAX_CONTEXT_FILE_BYTES = 5 * 1024 * 1024


def load_role_prompt(prompts_dir: Path | None, backend: str, role: str) -> str:
    """Load ``<prompts_dir>/<backend>/<role>.md``. Missing templates are empty."""
    if not role or prompts_dir is None:
        return ""
    # Role names come from tool arguments; keep them inside prompts_dir
    if Path(role).name != role:
        logger.warning(f"Ignoring role template with path separators: {role!r}")
        return ""

    path = Path(prompts_dir) / backend / f"{role}.md"
    try:
        return path.read_text(encoding="utf-8") + "\n\n"
    except OSError:
        return ""


def build_context_content(files: list[str] | None) -> str:
    """Concatenate context files under a ``Context:`` header."""
    if not files:
        return ""

    parts = []
    for file_path in files:
        path = Path(file_path)
        try:
            if path.stat().st_size > MAX_CONTEXT_FILE_BYTES:
                logger.debug(f"Skipping oversized context file: {file_path}")
                continue
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            continue
        parts.append(f"\n--- {file_path} ---\n{content}\n")

    if not parts:
        return ""
    return "\n\nContext:\n" + "".join(parts)


def build_prompt(
    prompts_dir: Path | None,
    backend: str,
    role: str,
    prompt: str,
    files: list[str] | None = None,
) -> str:
    """Role template + inline prompt + context files."""
    return load_role_prompt(prompts_dir, backend, role) + (prompt or "") + build_context_content(files)
