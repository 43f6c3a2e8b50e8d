"""Typed access to the RPI and orchestration mode documents."""

import logging
from pathlib import Path

from ohmyccg.state.models import (
    MODE_ADAPTERS,
    AutopilotCompositeState,
    ModeDocument,
    OrchestrationMode,
    RpiState,
    TeamRalphState,
    tag_legacy_document,
)
from ohmyccg.state.store import StateStore

logger = logging.getLogger(__name__)

RPI_DOCUMENT = "rpi-state"


def mode_document_name(mode: OrchestrationMode | str) -> str:
    return f"{OrchestrationMode(mode).value}-state"


class StateManager:
    """Reads and writes the state documents owned by the engines."""

    def __init__(self, workdir: Path | str, store: StateStore | None = None) -> None:
        self.store = store or StateStore(workdir)

    # ── RPI ────────────────────────────────────────────

    def get_rpi_state(self) -> RpiState | None:
        return self.store.load_model(RPI_DOCUMENT, RpiState)

    def save_rpi_state(self, state: RpiState) -> None:
        self.store.save_model(RPI_DOCUMENT, state)

    def clear_rpi_state(self) -> None:
        self.store.delete(RPI_DOCUMENT)

    # ── Modes ──────────────────────────────────────────

    def get_mode_state(self, mode: OrchestrationMode | str) -> ModeDocument | None:
        """Load a mode document as its tagged variant, or ``None``."""
        mode = OrchestrationMode(mode)
        name = mode_document_name(mode)
        data = self.store.read(name)
        if data is None:
            return None

        data = tag_legacy_document(mode, data)
        try:
            return MODE_ADAPTERS[mode].validate_python(data)
        except ValueError as e:
            logger.warning(f"Ignoring invalid {name} document: {e}", extra={"mode": mode.value})
            return None

    def save_mode_state(self, state: ModeDocument) -> None:
        self.store.save_model(mode_document_name(state.mode), state)

    def clear_mode_state(self, mode: OrchestrationMode | str) -> None:
        self.store.delete(mode_document_name(mode))

    # ── Queries ────────────────────────────────────────

    def is_any_mode_active(self) -> bool:
        for mode in OrchestrationMode:
            state = self.get_mode_state(mode)
            if state is not None and state.active:
                return True
        return False

    def get_active_modes(self) -> list[str]:
        """Active modes, with composite runs annotated by name."""
        active = []
        for mode in OrchestrationMode:
            state = self.get_mode_state(mode)
            if state is None or not state.active:
                continue
            if isinstance(state, AutopilotCompositeState):
                active.append("autopilot-composite")
            elif isinstance(state, TeamRalphState):
                active.append("ralph-team")
            else:
                active.append(mode.value)
        return active
