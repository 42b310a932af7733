"""Pure flow logic for the cancellation wizard.

Nothing in this module touches a store: given a step, the answers so far
and the user's variant, it decides where an event leads, what has to be
persisted, which outcome a terminal step records, and how progress is
displayed. The flow controller in ``engine.py`` performs the side effects.
"""

from __future__ import annotations

from statemachine.exceptions import TransitionNotAllowed

from cancelflow.core.protocols import (
    Answers,
    DownsellOffer,
    Outcome,
    SideEffect,
    Step,
    StepProgress,
    SubscriptionStatus,
    TransitionPlan,
    Variant,
)
from cancelflow.core.states import WizardStateMachine
from cancelflow.utils.exceptions import InvalidTransition

EVENTS = frozenset(
    {
        "answer_job",
        "submit_survey",
        "submit_feedback",
        "submit_offer",
        "accept_offer",
        "decline_offer",
        "finish",
        "proceed",
        "back",
    }
)

TERMINAL_OUTCOMES: dict[Step, Outcome] = {
    Step.FINAL_CANCELLATION: Outcome.CANCELLED,
    Step.COMPLETION: Outcome.CONTINUED,
    Step.YES_LAWYER_COMPLETION: Outcome.CONTINUED,
}

# Branch layouts used for progress display. Each slot lists the steps that
# can occupy that position.
FOUND_JOB_PATH: tuple[tuple[Step, ...], ...] = (
    (Step.SURVEY,),
    (Step.FEEDBACK,),
    (Step.VISA_OFFER, Step.DOWNSELL_OFFER),
    (Step.COMPLETION, Step.YES_LAWYER_COMPLETION),
)
JOB_SEARCH_PATH_B: tuple[tuple[Step, ...], ...] = (
    (Step.JOB_SEARCH_DOWNSELL,),
    (Step.JOB_SEARCH_SURVEY,),
    (Step.CANCELLATION_REASON,),
    (Step.FINAL_CANCELLATION,),
)
JOB_SEARCH_PATH_A: tuple[tuple[Step, ...], ...] = JOB_SEARCH_PATH_B[1:]

LONGEST_PATH = max(len(FOUND_JOB_PATH), len(JOB_SEARCH_PATH_B))


def plan_transition(
    step: Step,
    event: str,
    answers: Answers,
    variant: Variant,
    dest: Step | None = None,
) -> TransitionPlan:
    """Apply one event to a step without performing any side effect.

    Args:
        step: The current step.
        event: Event name, one of ``EVENTS``.
        answers: Answers accumulated so far, including the ones the current
            step is submitting.
        variant: The user's A/B variant.
        dest: Requested destination for ``back``.

    Returns:
        The TransitionPlan describing the target step and required effects.

    Raises:
        InvalidTransition: If the event is unknown or not allowed from
            ``step`` with these answers.
    """
    if event not in EVENTS:
        raise InvalidTransition(step.value, event)

    machine = WizardStateMachine(start_value=step.value)
    try:
        machine.send(
            event,
            answers=answers,
            variant=variant,
            dest=dest.value if dest else None,
        )
    except TransitionNotAllowed as e:
        raise InvalidTransition(step.value, event) from e

    target = Step(machine.current_state_value)
    effects: tuple[SideEffect, ...] = (SideEffect.PERSIST_ANSWERS,)
    outcome = None
    if target.is_terminal:
        outcome = TERMINAL_OUTCOMES[target]
        effects += (
            SideEffect.FINALIZE,
            SideEffect.UPDATE_SUBSCRIPTION,
            SideEffect.NOTIFY_OUTCOME,
        )
    return TransitionPlan(
        source=step, target=target, event=event, effects=effects, outcome=outcome
    )


def subscription_status_for(
    outcome: Outcome, accepted_at: Step | None = None
) -> SubscriptionStatus | None:
    """Map a final outcome onto the subscription status it implies.

    An offer accepted on the cancellation-reason step keeps the
    subscription running only until the end of the period, so it maps to
    ``pending_cancellation``; every other accepted offer keeps it active.
    ``abandoned`` and ``error`` leave the status untouched (None).
    """
    if outcome is Outcome.CANCELLED:
        return SubscriptionStatus.CANCELLED
    if outcome is Outcome.CONTINUED:
        return SubscriptionStatus.ACTIVE
    if outcome is Outcome.DOWNSELL_ACCEPTED:
        if accepted_at is Step.CANCELLATION_REASON:
            return SubscriptionStatus.PENDING_CANCELLATION
        return SubscriptionStatus.ACTIVE
    return None


def remains_active(status: SubscriptionStatus | None) -> bool:
    """Value passed to the caller's outcome callback."""
    return status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING_CANCELLATION)


def branch_path(step: Step, variant: Variant) -> tuple[tuple[Step, ...], ...]:
    """Return the branch layout a step belongs to for this variant."""
    if any(step in slot for slot in FOUND_JOB_PATH):
        return FOUND_JOB_PATH
    return JOB_SEARCH_PATH_B if variant is Variant.B else JOB_SEARCH_PATH_A


def step_progress(
    step: Step, variant: Variant, entered_from: Step | None = None
) -> StepProgress:
    """Position of a step within the branch actually taken.

    Args:
        step: The step being displayed.
        variant: The user's variant; variant A skips the downsell step.
        entered_from: For ``subscription-continued``, the step whose offer
            was accepted; its position is reused.

    Returns:
        StepProgress for display.
    """
    if step is Step.INITIAL:
        return StepProgress(0, LONGEST_PATH)
    if step is Step.SUBSCRIPTION_CONTINUED:
        source = entered_from or Step.JOB_SEARCH_SURVEY
        if source is Step.SUBSCRIPTION_CONTINUED:
            source = Step.JOB_SEARCH_SURVEY
        return step_progress(source, variant)

    path = branch_path(step, variant)
    for index, slot in enumerate(path, start=1):
        if step in slot:
            return StepProgress(index, len(path))
    # Variant A never shows job-search-downsell; report it as the entry step.
    return StepProgress(0, len(path))


class StepHistory:
    """The path actually taken, used to resolve ``back``.

    ``subscription-continued`` is a confirmation screen and is never
    recorded. Re-entering a step that is already on the path truncates the
    path to that point, so ``back`` always returns to the step that first
    led there.
    """

    def __init__(self) -> None:
        self._stack: list[Step] = []

    def record(self, source: Step, target: Step) -> None:
        """Record a forward transition."""
        if source is not Step.SUBSCRIPTION_CONTINUED:
            self._stack.append(source)
        if target in self._stack:
            del self._stack[self._stack.index(target) :]

    def previous(self) -> Step | None:
        """The step ``back`` would return to."""
        return self._stack[-1] if self._stack else None

    def pop(self) -> Step | None:
        """Consume the most recent entry after a ``back`` transition."""
        return self._stack.pop() if self._stack else None

    def clear(self) -> None:
        self._stack.clear()

    def __len__(self) -> int:
        return len(self._stack)


def _format_price(amount: float) -> str:
    if float(amount).is_integer():
        return f"${int(amount)}"
    return f"${amount:.2f}"


def build_downsell_offer(monthly_price: float, discount_percent: int = 50) -> DownsellOffer:
    """Build the retention offer shown on the still-searching branch.

    Args:
        monthly_price: The subscription's current monthly price.
        discount_percent: Percentage taken off the price.

    Returns:
        DownsellOffer, e.g. $25 at 50% gives "Get 50% off | $12.50".
    """
    discounted = round(monthly_price * (100 - discount_percent) / 100, 2)
    return DownsellOffer(
        original_price=monthly_price,
        discounted_price=discounted,
        discount_percentage=discount_percent,
        description=f"Get {discount_percent}% off | {_format_price(discounted)}",
    )
