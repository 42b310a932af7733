"""State machine for the cancellation wizard.

This module defines the WizardStateMachine that governs the valid
transitions between wizard steps. It uses python-statemachine to enforce
the transition table; the branch a multi-target event takes is decided by
condition methods fed from the event's keyword arguments.

States are organized into logical groups:
- Entry: start (initial)
- Found-a-job branch: survey, feedback, visa_offer, downsell_offer
- Still-searching branch: job_search_downsell, job_search_survey,
  cancellation_reason, subscription_continued
- Terminal: completion, yes_lawyer_completion, final_cancellation (final)

State values are the wire names of ``Step`` (``"visa-offer"`` and so on).
"""

from statemachine import State as SMState
from statemachine import StateMachine

from cancelflow.core.protocols import Answers, Variant


class WizardStateMachine(StateMachine):
    """State machine for the subscription cancellation wizard.

    Every event accepts the same keyword arguments so condition methods can
    pick what they need:

    - ``answers``: the ``Answers`` accumulated so far, including the ones
      the current step just submitted.
    - ``variant``: the user's A/B ``Variant``.
    - ``dest``: the requested step value, used by ``back`` only.

    Attributes:
        step: Counter that increments on each state transition.
    """

    # Entry state
    start = SMState(value="initial", initial=True)

    # Found-a-job branch
    survey = SMState(value="survey")
    feedback = SMState(value="feedback")
    visa_offer = SMState(value="visa-offer")
    downsell_offer = SMState(value="downsell-offer")

    # Still-searching branch
    job_search_downsell = SMState(value="job-search-downsell")
    job_search_survey = SMState(value="job-search-survey")
    cancellation_reason = SMState(value="cancellation-reason")
    subscription_continued = SMState(value="subscription-continued")

    # Terminal states
    completion = SMState(value="completion", final=True)
    yes_lawyer_completion = SMState(value="yes-lawyer-completion", final=True)
    final_cancellation = SMState(value="final-cancellation", final=True)

    # Transitions

    # answer_job: start -> branch chosen by job status and variant
    answer_job = (
        start.to(survey, cond="reported_job_found")
        | start.to(job_search_downsell, cond="shows_downsell")
        | start.to(job_search_survey)
    )

    submit_survey = survey.to(feedback)

    submit_feedback = (
        feedback.to(visa_offer, cond="found_through_platform")
        | feedback.to(downsell_offer)
    )

    # submit_offer: either offer step -> completion screen by lawyer status
    submit_offer = (
        visa_offer.to(yes_lawyer_completion, cond="has_lawyer")
        | visa_offer.to(completion)
        | downsell_offer.to(yes_lawyer_completion, cond="has_lawyer")
        | downsell_offer.to(completion)
    )

    accept_offer = (
        job_search_downsell.to(subscription_continued)
        | job_search_survey.to(subscription_continued)
        | cancellation_reason.to(subscription_continued)
    )

    decline_offer = job_search_downsell.to(job_search_survey)

    finish = subscription_continued.to(job_search_survey)

    # proceed: complete a still-searching step without accepting the offer
    proceed = (
        job_search_survey.to(cancellation_reason)
        | cancellation_reason.to(final_cancellation)
    )

    # back: only to a step that can actually precede the current one
    back = (
        survey.to(start, cond="dest_is_initial")
        | feedback.to(survey, cond="dest_is_survey")
        | visa_offer.to(feedback, cond="dest_is_feedback")
        | downsell_offer.to(feedback, cond="dest_is_feedback")
        | job_search_downsell.to(start, cond="dest_is_initial")
        | job_search_survey.to(job_search_downsell, cond="dest_is_job_search_downsell")
        | job_search_survey.to(start, cond="dest_is_initial")
        | cancellation_reason.to(job_search_survey, cond="dest_is_job_search_survey")
    )

    def __init__(self, start_value: str | None = None) -> None:
        """Initialize the state machine.

        Args:
            start_value: Optional step value to start from instead of
                ``initial``, used to evaluate a single transition.
        """
        super().__init__(start_value=start_value)

    # Condition methods for branching transitions

    def reported_job_found(self, answers: Answers) -> bool:
        """Check if the user said they found a job."""
        return bool(answers.job_found)

    def shows_downsell(self, variant: Variant) -> bool:
        """Check if the user's variant sees the job-search downsell step."""
        return variant is Variant.B

    def found_through_platform(self, answers: Answers) -> bool:
        """Check if the job was found with MigrateMate."""
        return bool(answers.found_with_migrate_mate)

    def has_lawyer(self, answers: Answers) -> bool:
        """Check if the user's company provides an immigration lawyer."""
        return bool(answers.has_lawyer)

    # Condition methods for dest-based back transitions

    def dest_is_initial(self, dest: str | None) -> bool:
        """Check if destination step is initial."""
        return dest == "initial"

    def dest_is_survey(self, dest: str | None) -> bool:
        """Check if destination step is survey."""
        return dest == "survey"

    def dest_is_feedback(self, dest: str | None) -> bool:
        """Check if destination step is feedback."""
        return dest == "feedback"

    def dest_is_job_search_downsell(self, dest: str | None) -> bool:
        """Check if destination step is job-search-downsell."""
        return dest == "job-search-downsell"

    def dest_is_job_search_survey(self, dest: str | None) -> bool:
        """Check if destination step is job-search-survey."""
        return dest == "job-search-survey"
