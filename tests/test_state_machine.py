"""Tests for the phase state machine (pure functions, no persistence).

Tests cover:
- new_session() initial state and project name validation
- complete_phase() successor rule, terminal transition, data merging
- get_progress() for every number of completed phases
- InvalidPhase leaves the session untouched
"""

import pytest

from planforge.errors import InvalidPhase, ValidationError
from planforge.sessions import state_machine
from planforge.sessions.schemas import ChecklistResult, Output, Phase, SessionStatus
from planforge.sessions.state_machine import PHASE_ORDER


class TestNewSession:
    """Tests for new_session() and validate_project_name()."""

    def test_all_six_phases_incomplete(self):
        session = state_machine.new_session("Acme Widget")
        assert list(session.phases) == list(PHASE_ORDER)
        assert all(not record.completed for record in session.phases.values())

    def test_initial_state(self):
        session = state_machine.new_session("Acme Widget")
        assert session.current_phase is Phase.ANALYST
        assert session.status is SessionStatus.ACTIVE
        assert session.revision == 0
        assert session.global_data == {}
        assert session.completed_at is None

    def test_name_is_trimmed(self):
        session = state_machine.new_session("  Acme Widget  ")
        assert session.project_name == "Acme Widget"

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_empty_name_rejected(self, name):
        with pytest.raises(ValidationError):
            state_machine.new_session(name)

    def test_name_length_limit(self):
        assert state_machine.new_session("x" * 200).project_name == "x" * 200
        with pytest.raises(ValidationError):
            state_machine.new_session("x" * 201)


class TestCompletePhase:
    """Tests for complete_phase()."""

    @pytest.mark.parametrize(
        "phase,expected",
        [
            ("analyst", Phase.PM),
            ("pm", Phase.ARCHITECT),
            ("architect", Phase.DESIGN_ARCHITECT),
            ("designArchitect", Phase.PO),
            ("po", Phase.SM),
            ("sm", Phase.COMPLETED),
        ],
    )
    def test_next_phase_is_successor(self, phase, expected):
        session = state_machine.new_session("Acme Widget")
        updated, next_phase = state_machine.complete_phase(session, phase, {}, [])
        assert next_phase is expected
        assert updated.current_phase is expected

    def test_completing_sm_finishes_session(self):
        session = state_machine.new_session("Acme Widget")
        updated, next_phase = state_machine.complete_phase(session, "sm", {}, [])
        assert next_phase is Phase.COMPLETED
        assert updated.status is SessionStatus.COMPLETED
        assert updated.completed_at is not None

    def test_acme_widget_example(self):
        session = state_machine.new_session("Acme Widget")
        updated, _ = state_machine.complete_phase(
            session,
            "analyst",
            {},
            [Output(type="project-brief", content="# Brief")],
        )
        assert updated.current_phase is Phase.PM
        assert updated.phases["analyst"].completed is True
        assert updated.phases["analyst"].outputs[0].content == "# Brief"
        assert updated.phases["analyst"].completed_at is not None

    def test_later_phase_overrides_global_data(self):
        session = state_machine.new_session("Acme Widget")
        session, _ = state_machine.complete_phase(session, "analyst", {"x": 1, "y": "a"}, [])
        session, _ = state_machine.complete_phase(session, "pm", {"x": 2}, [])
        assert session.global_data == {"x": 2, "y": "a"}

    def test_recompletion_overwrites_record(self):
        session = state_machine.new_session("Acme Widget")
        session, _ = state_machine.complete_phase(
            session, "analyst", {"a": 1}, [Output(type="project-brief", content="v1")]
        )
        session, _ = state_machine.complete_phase(
            session, "analyst", {"b": 2}, [Output(type="notes", content="v2")]
        )
        record = session.phases["analyst"]
        assert record.data == {"b": 2}
        assert [o.type for o in record.outputs] == ["notes"]

    def test_completing_earlier_phase_moves_current_phase_back(self):
        session = state_machine.new_session("Acme Widget")
        session, _ = state_machine.complete_phase(session, "architect", {}, [])
        assert session.current_phase is Phase.DESIGN_ARCHITECT
        session, _ = state_machine.complete_phase(session, "analyst", {}, [])
        assert session.current_phase is Phase.PM

    def test_input_session_not_mutated(self):
        session = state_machine.new_session("Acme Widget")
        state_machine.complete_phase(session, "analyst", {"x": 1}, [])
        assert session.phases["analyst"].completed is False
        assert session.global_data == {}

    def test_invalid_phase_rejected(self):
        session = state_machine.new_session("Acme Widget")
        before = session.model_dump()
        with pytest.raises(InvalidPhase):
            state_machine.complete_phase(session, "qa", {"x": 1}, [])
        assert session.model_dump() == before

    def test_completed_is_not_a_phase_key(self):
        session = state_machine.new_session("Acme Widget")
        with pytest.raises(InvalidPhase):
            state_machine.complete_phase(session, "completed", {}, [])

    def test_checklist_results_recorded(self):
        session = state_machine.new_session("Acme Widget")
        result = ChecklistResult(responses={"a": True, "b": False})
        session, _ = state_machine.complete_phase(
            session, "po", {}, [], {"po-master-checklist": result}
        )
        stored = session.phases["po"].checklist_results["po-master-checklist"]
        assert stored.completion_percentage == 50


class TestProgress:
    """Tests for get_progress()."""

    @pytest.mark.parametrize("k", range(0, 7))
    def test_progress_after_k_phases(self, k):
        session = state_machine.new_session("Acme Widget")
        for phase in PHASE_ORDER[:k]:
            session, _ = state_machine.complete_phase(session, phase, {}, [])
        assert state_machine.get_progress(session) == round(100 * k / 6)

    def test_completed_phases_in_fixed_order(self):
        session = state_machine.new_session("Acme Widget")
        session, _ = state_machine.complete_phase(session, "po", {}, [])
        session, _ = state_machine.complete_phase(session, "analyst", {}, [])
        assert state_machine.completed_phases(session) == ["analyst", "po"]


class TestSchemas:
    """Defaults filled in by the session schemas."""

    def test_output_filename_defaults_to_type(self):
        assert Output(type="prd", content="x").filename == "prd.md"

    def test_explicit_output_filename_kept(self):
        assert Output(type="prd", content="x", filename="custom.md").filename == "custom.md"

    def test_checklist_percentage_uses_total_items(self):
        result = ChecklistResult(responses={"a": True}, total_items=4)
        assert result.completion_percentage == 25

    def test_empty_checklist_is_zero_percent(self):
        assert ChecklistResult().completion_percentage == 0
