"""Tests for autopilot."""

import pytest

from ohmyccg.modes.autopilot import PHASE_INSTRUCTIONS, AutopilotEngine
from ohmyccg.modes.ralph import ModeNotActiveError
from ohmyccg.rpi.engine import RpiEngine
from ohmyccg.state.models import AutopilotCompositeState, AutopilotState, RpiPhase


@pytest.fixture
def autopilot(workdir):
    return AutopilotEngine(workdir)


class TestAutopilotStart:
    """Tests for starting autopilot."""

    def test_start_initializes_rpi(self, autopilot, workdir):
        state = autopilot.start("add-login")

        assert isinstance(state, AutopilotState)
        assert state.rpi_phase == RpiPhase.INIT
        assert RpiEngine(workdir).get_state().change_name == "add-login"

    def test_start_picks_up_existing_rpi_phase(self, autopilot, workdir):
        engine = RpiEngine(workdir)
        engine.init("existing")
        engine.start_research("existing")

        state = autopilot.start("ignored")

        assert state.rpi_phase == RpiPhase.RESEARCH
        assert engine.get_state().change_name == "existing"

    def test_start_composite(self, autopilot):
        state = autopilot.start_composite("add-login", linked_ralph=True)

        assert isinstance(state, AutopilotCompositeState)
        assert autopilot.should_start_ralph() is True
        assert autopilot.should_start_team() is False

    def test_plain_mode_has_no_composite_state(self, autopilot):
        autopilot.start()
        assert autopilot.get_composite_state() is None
        assert autopilot.should_start_ralph() is False


class TestAdvancePhase:
    """Tests for phase advancement."""

    def test_walks_phase_order(self, autopilot, workdir):
        autopilot.start("add-login")

        phases = [autopilot.advance_phase()["next_phase"] for _ in range(4)]

        assert phases == [RpiPhase.RESEARCH, RpiPhase.PLAN, RpiPhase.IMPL, RpiPhase.REVIEW]
        assert RpiEngine(workdir).get_current_phase() == RpiPhase.REVIEW
        assert autopilot.get_state().rpi_phase == RpiPhase.REVIEW

    def test_past_review_is_terminal(self, autopilot):
        autopilot.start()
        for _ in range(4):
            result = autopilot.advance_phase()
            assert result["auto_transition"] is True

        result = autopilot.advance_phase()

        assert result == {"next_phase": RpiPhase.REVIEW, "auto_transition": False}
        assert autopilot.get_state().active is False

    def test_advance_after_finish_raises(self, autopilot):
        autopilot.start()
        for _ in range(5):
            autopilot.advance_phase()

        with pytest.raises(ModeNotActiveError):
            autopilot.advance_phase()

    def test_advance_without_start_raises(self, autopilot):
        with pytest.raises(ModeNotActiveError, match="Autopilot not active"):
            autopilot.advance_phase()

    def test_advance_after_cancel_raises(self, autopilot):
        autopilot.start()
        autopilot.cancel()
        with pytest.raises(ModeNotActiveError):
            autopilot.advance_phase()

    def test_composite_records_completed_phases(self, autopilot):
        autopilot.start_composite()
        autopilot.set_current_action("Gathering requirements")
        autopilot.advance_phase()
        autopilot.advance_phase()

        composite = autopilot.get_composite_state()
        assert composite.phases_completed == [RpiPhase.INIT, RpiPhase.RESEARCH]
        assert composite.current_action is None


class TestCompositeTracking:
    """Tests for composite-only bookkeeping."""

    def test_record_phase_completion_is_set_like(self, autopilot):
        autopilot.start_composite()
        autopilot.record_phase_completion("plan")
        autopilot.record_phase_completion("plan")

        assert autopilot.get_composite_state().phases_completed == [RpiPhase.PLAN]

    def test_record_phase_completion_plain_mode_noop(self, autopilot):
        autopilot.start()
        autopilot.record_phase_completion("plan")
        assert autopilot.get_composite_state() is None

    def test_set_current_action(self, autopilot):
        autopilot.start_composite()
        autopilot.set_current_action("Running research")
        assert autopilot.get_composite_state().current_action == "Running research"

    def test_context_usage_below_threshold(self, autopilot):
        autopilot.start_composite()
        result = autopilot.check_context_usage(42)

        assert result == {"should_clear": False, "message": ""}
        assert autopilot.get_composite_state().context_percent == 42

    def test_context_usage_at_threshold(self, autopilot):
        result = autopilot.check_context_usage(85, threshold=85)

        assert result["should_clear"] is True
        assert "Context usage at 85% (threshold: 85%)" in result["message"]


class TestRunPhase:
    """Tests for phase instructions."""

    def test_plain_instructions(self, autopilot):
        autopilot.start()
        assert autopilot.run_phase("research") == PHASE_INSTRUCTIONS[RpiPhase.RESEARCH]
        assert autopilot.run_phase("impl") == PHASE_INSTRUCTIONS[RpiPhase.IMPL]

    def test_linked_impl_instructions(self, autopilot):
        autopilot.start_composite(linked_ralph=True, linked_team=True)
        instructions = autopilot.run_phase(RpiPhase.IMPL)
        assert "Team workers" in instructions
        assert "Ralph" in instructions

    def test_unlinked_composite_uses_default(self, autopilot):
        autopilot.start_composite()
        assert autopilot.run_phase("impl") == PHASE_INSTRUCTIONS[RpiPhase.IMPL]


class TestAutopilotSummary:
    """Tests for the text summary."""

    def test_not_active(self, autopilot):
        assert autopilot.get_summary() == "Autopilot not active."

    def test_composite_summary(self, autopilot):
        autopilot.start_composite("add-login", linked_team=True)
        autopilot.advance_phase()
        autopilot.set_current_action("Exploring constraints")

        summary = autopilot.get_summary()

        assert "Autopilot: ACTIVE" in summary
        assert "RPI Phase: RESEARCH" in summary
        assert "Composite Mode: ON" in summary
        assert "  Linked Team:  YES" in summary
        assert "  Phases done: [init]" in summary
        assert "  Current: Exploring constraints" in summary
        assert "Change: add-login" in summary

    def test_reset(self, autopilot):
        autopilot.start()
        autopilot.reset()
        assert autopilot.get_state() is None


class TestAutopilotProjectConfig:
    """Tests for defaults from .oh-my-ccg/config.json."""

    def test_context_threshold_from_config(self, workdir, write_project_config):
        write_project_config({"autopilot": {"contextThreshold": 60}})
        autopilot = AutopilotEngine(workdir)

        result = autopilot.check_context_usage(65)

        assert result["should_clear"] is True
        assert "(threshold: 60%)" in result["message"]
        assert autopilot.check_context_usage(65, threshold=90)["should_clear"] is False

    def test_composite_links_from_config(self, workdir, write_project_config):
        write_project_config({"autopilot": {"linkedRalph": True, "linkedTeam": True}})
        autopilot = AutopilotEngine(workdir)

        autopilot.start_composite("add-login")

        assert autopilot.should_start_ralph() is True
        assert autopilot.should_start_team() is True

    def test_explicit_links_override_config(self, workdir, write_project_config):
        write_project_config({"autopilot": {"linkedRalph": True}})
        autopilot = AutopilotEngine(workdir)

        autopilot.start_composite(linked_ralph=False)

        assert autopilot.should_start_ralph() is False
