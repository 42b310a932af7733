"""Unit tests for the WizardStateMachine.

Tests cover:
- Initial state verification
- Branching transitions driven by answers and variant
- Invalid transitions raising TransitionNotAllowed
- Terminal (final) states behavior
- Back transitions guarded by the requested destination
"""

import pytest
from statemachine.exceptions import TransitionNotAllowed

from cancelflow.core.protocols import Answers, Variant
from cancelflow.core.states import WizardStateMachine


def send(
    sm: WizardStateMachine,
    event: str,
    answers: Answers | None = None,
    variant: Variant = Variant.A,
    dest: str | None = None,
) -> None:
    """Send an event with the keyword arguments every condition expects."""
    sm.send(event, answers=answers or Answers(), variant=variant, dest=dest)


class TestInitialState:
    """Tests for initial state configuration."""

    def test_initial_state_is_start(self) -> None:
        """State machine should start in the 'initial' step."""
        sm = WizardStateMachine()
        assert sm.current_state_value == sm.start.value
        assert sm.current_state_value == "initial"

    def test_start_value_restores_a_step(self) -> None:
        """Should be able to start from any step value."""
        sm = WizardStateMachine(start_value="cancellation-reason")
        assert sm.current_state_value == sm.cancellation_reason.value


class TestAnswerJobTransition:
    """Tests for the 'answer_job' transition from the entry step."""

    def test_found_job_goes_to_survey(self) -> None:
        sm = WizardStateMachine()
        send(sm, "answer_job", Answers(job_found=True), Variant.B)
        assert sm.current_state_value == sm.survey.value

    def test_not_found_variant_b_goes_to_downsell(self) -> None:
        sm = WizardStateMachine()
        send(sm, "answer_job", Answers(job_found=False), Variant.B)
        assert sm.current_state_value == sm.job_search_downsell.value

    def test_not_found_variant_a_skips_downsell(self) -> None:
        sm = WizardStateMachine()
        send(sm, "answer_job", Answers(job_found=False), Variant.A)
        assert sm.current_state_value == sm.job_search_survey.value


class TestFoundJobBranch:
    """Tests for survey -> feedback -> offer -> completion."""

    def test_survey_to_feedback(self) -> None:
        sm = WizardStateMachine(start_value="survey")
        send(sm, "submit_survey")
        assert sm.current_state_value == sm.feedback.value

    def test_feedback_to_visa_offer_when_found_through_platform(self) -> None:
        sm = WizardStateMachine(start_value="feedback")
        send(sm, "submit_feedback", Answers(found_with_migrate_mate=True))
        assert sm.current_state_value == sm.visa_offer.value

    def test_feedback_to_downsell_offer_otherwise(self) -> None:
        sm = WizardStateMachine(start_value="feedback")
        send(sm, "submit_feedback", Answers(found_with_migrate_mate=False))
        assert sm.current_state_value == sm.downsell_offer.value

    @pytest.mark.parametrize("start", ["visa-offer", "downsell-offer"])
    def test_offer_with_lawyer(self, start: str) -> None:
        sm = WizardStateMachine(start_value=start)
        send(sm, "submit_offer", Answers(has_lawyer=True))
        assert sm.current_state_value == sm.yes_lawyer_completion.value

    @pytest.mark.parametrize("start", ["visa-offer", "downsell-offer"])
    def test_offer_without_lawyer(self, start: str) -> None:
        sm = WizardStateMachine(start_value=start)
        send(sm, "submit_offer", Answers(has_lawyer=False))
        assert sm.current_state_value == sm.completion.value


class TestStillSearchingBranch:
    """Tests for the job-search downsell, survey and reason steps."""

    def test_decline_downsell(self) -> None:
        sm = WizardStateMachine(start_value="job-search-downsell")
        send(sm, "decline_offer", variant=Variant.B)
        assert sm.current_state_value == sm.job_search_survey.value

    @pytest.mark.parametrize(
        "start", ["job-search-downsell", "job-search-survey", "cancellation-reason"]
    )
    def test_accept_offer_goes_to_subscription_continued(self, start: str) -> None:
        sm = WizardStateMachine(start_value=start)
        send(sm, "accept_offer")
        assert sm.current_state_value == sm.subscription_continued.value

    def test_finish_returns_to_job_search_survey(self) -> None:
        sm = WizardStateMachine(start_value="subscription-continued")
        send(sm, "finish")
        assert sm.current_state_value == sm.job_search_survey.value

    def test_proceed_through_survey_and_reason(self) -> None:
        sm = WizardStateMachine(start_value="job-search-survey")
        send(sm, "proceed")
        assert sm.current_state_value == sm.cancellation_reason.value
        send(sm, "proceed")
        assert sm.current_state_value == sm.final_cancellation.value


class TestInvalidTransitions:
    """Events not allowed from the current state."""

    def test_decline_not_allowed_from_job_search_survey(self) -> None:
        sm = WizardStateMachine(start_value="job-search-survey")
        with pytest.raises(TransitionNotAllowed):
            send(sm, "decline_offer")

    def test_submit_feedback_not_allowed_from_start(self) -> None:
        sm = WizardStateMachine()
        with pytest.raises(TransitionNotAllowed):
            send(sm, "submit_feedback")

    def test_back_not_allowed_from_start(self) -> None:
        sm = WizardStateMachine()
        with pytest.raises(TransitionNotAllowed):
            send(sm, "back", dest="initial")

    def test_back_not_allowed_from_subscription_continued(self) -> None:
        sm = WizardStateMachine(start_value="subscription-continued")
        with pytest.raises(TransitionNotAllowed):
            send(sm, "back", dest="job-search-survey")


class TestTerminalStates:
    """Terminal states accept no further events."""

    @pytest.mark.parametrize(
        "terminal", ["completion", "yes-lawyer-completion", "final-cancellation"]
    )
    def test_terminal_state_is_final(self, terminal: str) -> None:
        sm = WizardStateMachine(start_value=terminal)
        state = next(s for s in sm.states if s.value == sm.current_state_value)
        assert state.final is True

    @pytest.mark.parametrize(
        "event", ["answer_job", "proceed", "accept_offer", "back", "finish"]
    )
    def test_no_event_leaves_final_cancellation(self, event: str) -> None:
        sm = WizardStateMachine(start_value="final-cancellation")
        with pytest.raises(TransitionNotAllowed):
            send(sm, event, dest="cancellation-reason")


class TestBackTransitions:
    """Back transitions only to a step that can precede the current one."""

    @pytest.mark.parametrize(
        ("start", "dest"),
        [
            ("survey", "initial"),
            ("feedback", "survey"),
            ("visa-offer", "feedback"),
            ("downsell-offer", "feedback"),
            ("job-search-downsell", "initial"),
            ("job-search-survey", "job-search-downsell"),
            ("job-search-survey", "initial"),
            ("cancellation-reason", "job-search-survey"),
        ],
    )
    def test_allowed_back_pairs(self, start: str, dest: str) -> None:
        sm = WizardStateMachine(start_value=start)
        send(sm, "back", dest=dest)
        assert sm.current_state_value == dest

    def test_back_to_unrelated_step_rejected(self) -> None:
        sm = WizardStateMachine(start_value="feedback")
        with pytest.raises(TransitionNotAllowed):
            send(sm, "back", dest="job-search-survey")
