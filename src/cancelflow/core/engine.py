"""Cancellation flow controller for cancelflow.

This module provides the orchestrator that owns one wizard lifetime: it
opens (creates or resumes) the user's cancellation session, validates each
step's answers, applies transitions through the pure flow logic, and issues
the persistence calls that follow every transition.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

from cancelflow.core.flow import (
    StepHistory,
    build_downsell_offer,
    plan_transition,
    remains_active,
    step_progress,
    subscription_status_for,
)
from cancelflow.core.protocols import (
    Answers,
    AuditLoggerProtocol,
    CancellationSession,
    CancellationStoreProtocol,
    DownsellOffer,
    FlowError,
    FlowStatus,
    Outcome,
    Step,
    StepProgress,
    Subscription,
    SubscriptionStatus,
    Variant,
)
from cancelflow.core.variant import VariantResolver
from cancelflow.utils.audit import AuditLogger
from cancelflow.utils.config import AppConfig, PersistenceMode
from cancelflow.utils.exceptions import (
    FinalizationFailed,
    InitializationFailed,
    InputRejected,
    InvalidTransition,
    StepUpdateFailed,
    TransientError,
)
from cancelflow.utils.validation import (
    sanitize_for_store,
    validate_cancellation_reason,
    validate_feedback,
    validate_survey_answers,
    validate_visa_type,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SURVEY_PROCESSING_FAILED = "SURVEY_PROCESSING_FAILED"
FEEDBACK_PROCESSING_FAILED = "FEEDBACK_PROCESSING_FAILED"
VISA_OFFER_PROCESSING_FAILED = "VISA_OFFER_PROCESSING_FAILED"
REASON_PROCESSING_FAILED = "REASON_PROCESSING_FAILED"


class CancellationFlow:
    """Coordinates one user's pass through the cancellation wizard.

    A flow is constructed fresh for each time the wizard opens. The store,
    audit sink and variant resolver are injected; nothing is module-level.

    Attributes:
        store: Cancellation/subscription record store.
        config: Application configuration.
        audit: Security/audit log sink.
        variants: Variant resolver for the downsell experiment.
        on_outcome: Called once with ``True`` if the subscription remains
            active after the flow, ``False`` if it was cancelled.
        status: Lifecycle of this controller.
        session: The open session, None until ``open`` succeeds.
        subscription: The subscription being cancelled.
        error: The latest error surfaced to the presentation layer.

    Example:
        >>> flow = CancellationFlow(store=InMemoryStore(), config=AppConfig())
        >>> await flow.open("user-123")
        >>> await flow.answer_job(found=False)
        >>> flow.current_step
        <Step.JOB_SEARCH_SURVEY: 'job-search-survey'>
    """

    def __init__(
        self,
        store: CancellationStoreProtocol,
        config: AppConfig,
        audit: AuditLoggerProtocol | None = None,
        variant_resolver: VariantResolver | None = None,
        on_outcome: Callable[[bool], None] | None = None,
    ):
        """Initialize the CancellationFlow.

        Args:
            store: Record store implementing CancellationStoreProtocol.
            config: Application configuration.
            audit: Optional audit sink; an AuditLogger is built from config
                when omitted.
            variant_resolver: Optional resolver; built from store, audit and
                the configured salt when omitted.
            on_outcome: Optional completion callback.
                Signature: (subscription_remains_active: bool) -> None
        """
        self.store = store
        self.config = config
        self.audit = audit or AuditLogger(log_file=config.audit_log_file)
        self.variants = variant_resolver or VariantResolver(
            store, self.audit, salt=config.ab_salt
        )
        self.on_outcome = on_outcome or (lambda remains_active: None)

        self.status = FlowStatus.CLOSED
        self.session: CancellationSession | None = None
        self.subscription: Subscription | None = None
        self.error: FlowError | None = None

        self._user_id: str | None = None
        self._history = StepHistory()
        self._accepted_at: Step | None = None
        self._outcome_notified = False
        self._pending: set[asyncio.Task[None]] = set()
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, user_id: str) -> Step:
        """Create or resume the user's cancellation session.

        Blocks until the session is loaded. The wizard always starts at
        ``initial``; answers from a resumed record are kept as pre-fill.

        Args:
            user_id: Caller-supplied user identifier.

        Returns:
            The entry step.

        Raises:
            InitializationFailed: If the user has no active subscription or
                the store cannot be reached. ``retry`` re-runs this.
        """
        self._reset()
        self._user_id = user_id
        self.status = FlowStatus.LOADING

        try:
            if not user_id or not isinstance(user_id, str):
                raise InitializationFailed("Invalid user ID")

            subscription = await self.store.get_subscription(user_id)
            if subscription is None:
                raise InitializationFailed("No active subscription found for user")

            existing = await self.store.get_cancellation(user_id)
            variant = await self.variants.get_or_assign_variant(user_id, existing)

            if existing is not None and existing.final_outcome is None:
                session = CancellationSession(
                    id=existing.id,
                    user_id=user_id,
                    subscription_id=subscription.id,
                    variant=variant,
                    current_step=Step.INITIAL,
                    answers=Answers.from_record(existing),
                    started_at=existing.created_at,
                    last_updated=existing.updated_at or existing.created_at,
                    resumed=True,
                )
                self.audit.log_security_event(
                    "cancellation_session_resumed",
                    user_id,
                    {
                        "sessionId": session.id,
                        "variant": session.variant.value,
                        "currentStep": Step.INITIAL.value,
                        "hasExistingData": session.answers != Answers(),
                    },
                )
            else:
                record = await self.store.create_cancellation(
                    sanitize_for_store(
                        {
                            "user_id": user_id,
                            "subscription_id": subscription.id,
                            "downsell_variant": variant,
                            "cancellation_step": Step.INITIAL,
                            "accepted_downsell": False,
                        },
                        self.config.max_text_length,
                    )
                )
                session = CancellationSession(
                    id=record.id,
                    user_id=user_id,
                    subscription_id=subscription.id,
                    variant=record.downsell_variant,
                    started_at=record.created_at,
                    last_updated=record.created_at,
                )
                self.audit.log_security_event(
                    "cancellation_session_initialized",
                    user_id,
                    {
                        "sessionId": session.id,
                        "variant": session.variant.value,
                        "subscriptionPrice": subscription.monthly_price,
                        "previousOutcome": (
                            existing.final_outcome.value
                            if existing is not None and existing.final_outcome
                            else None
                        ),
                    },
                )
        except Exception as e:
            self.status = FlowStatus.ERROR
            error = self._record_error(
                InitializationFailed.error_code, str(e) or type(e).__name__, Step.INITIAL
            )
            self.audit.log_security_event(
                "cancellation_initialization_failed", user_id, {"error": error.to_dict()}
            )
            logger.warning("Cancellation initialization failed for %s: %s", user_id, e)
            if isinstance(e, InitializationFailed):
                raise
            raise InitializationFailed(str(e) or type(e).__name__) from e

        self.subscription = subscription
        self.session = session
        self.error = None
        self.status = FlowStatus.READY
        logger.info(
            "Cancellation session %s ready (variant %s, resumed=%s)",
            session.id,
            session.variant.value,
            session.resumed,
        )
        return session.current_step

    async def retry(self) -> Step:
        """Re-run initialization for the last user after a failure."""
        if self._user_id is None:
            raise InitializationFailed("Nothing to retry: the flow was never opened")
        return await self.open(self._user_id)

    async def close(self) -> None:
        """Close the wizard and discard the in-memory flow.

        Leaving from ``subscription-continued`` after accepting an offer
        finalizes the session as ``downsell_accepted``. Any other close
        leaves the stored record as last persisted. In-flight writes are
        not cancelled.
        """
        session = self.session
        if (
            session is not None
            and session.current_step is Step.SUBSCRIPTION_CONTINUED
            and session.answers.accepted_downsell
            and session.final_outcome is None
        ):
            await self._finalize(
                session,
                Step.SUBSCRIPTION_CONTINUED,
                Outcome.DOWNSELL_ACCEPTED,
                accepted_at=self._accepted_at,
            )

        if session is not None:
            self.audit.log_security_event(
                "cancellation_flow_closed",
                session.user_id,
                {"sessionId": session.id, "step": session.current_step.value},
            )
        self._reset()

    async def drain(self) -> None:
        """Wait for every background write issued so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # ------------------------------------------------------------------
    # State exposed to the presentation layer
    # ------------------------------------------------------------------

    @property
    def current_step(self) -> Step:
        """The single active step (``initial`` before the flow opens)."""
        return self.session.current_step if self.session else Step.INITIAL

    @property
    def variant(self) -> Variant | None:
        return self.session.variant if self.session else None

    @property
    def prefill(self) -> Answers:
        """Answers to pre-fill the current step with."""
        return self.session.answers if self.session else Answers()

    @property
    def progress(self) -> StepProgress:
        """Display position of the current step within the branch taken."""
        variant = self.variant or Variant.A
        return step_progress(self.current_step, variant, entered_from=self._accepted_at)

    @property
    def offer(self) -> DownsellOffer | None:
        """The retention offer for this user's subscription."""
        if self.subscription is None:
            return None
        return build_downsell_offer(
            self.subscription.monthly_price, self.config.downsell_discount_percent
        )

    @property
    def can_go_back(self) -> bool:
        return (
            self.session is not None
            and not self.current_step.is_terminal
            and self.current_step is not Step.SUBSCRIPTION_CONTINUED
            and self._history.previous() is not None
        )

    # ------------------------------------------------------------------
    # Step actions
    # ------------------------------------------------------------------

    async def answer_job(self, found: bool) -> Step:
        """Answer "Have you found a job yet?" on the entry step."""
        session = self._require_step("answer_job", Step.INITIAL)
        if not isinstance(found, bool):
            self._reject(session, InputRejected("Please choose yes or no", "job_found"))
        answers = session.answers.update(job_found=found)
        return await self._advance("answer_job", answers, StepUpdateFailed.error_code)

    async def submit_survey(
        self,
        found_with_migrate_mate: bool,
        roles_applied: str,
        companies_emailed: str,
        companies_interviewed: str,
    ) -> Step:
        """Submit the congratulations survey of the found-a-job branch."""
        session = self._require_step("submit_survey", Step.SURVEY)
        if not isinstance(found_with_migrate_mate, bool):
            self._reject(
                session,
                InputRejected(
                    "Please tell us whether you found this job with MigrateMate",
                    "found_with_migrate_mate",
                ),
            )
        survey = self._validated(
            session,
            lambda: validate_survey_answers(
                roles_applied, companies_emailed, companies_interviewed
            ),
        )
        answers = session.answers.update(
            found_with_migrate_mate=found_with_migrate_mate, **survey
        )
        return await self._advance("submit_survey", answers, SURVEY_PROCESSING_FAILED)

    async def submit_feedback(self, text: str) -> Step:
        """Submit the free-text feedback step."""
        session = self._require_step("submit_feedback", Step.FEEDBACK)
        feedback = self._validated(
            session, lambda: validate_feedback(text, self.config.feedback_min_length)
        )
        answers = session.answers.update(feedback_text=feedback)
        return await self._advance(
            "submit_feedback", answers, FEEDBACK_PROCESSING_FAILED
        )

    async def submit_offer(self, has_lawyer: bool, visa_type: str | None = None) -> Step:
        """Submit the visa offer (or found-elsewhere downsell offer) step."""
        session = self._require_step(
            "submit_offer", Step.VISA_OFFER, Step.DOWNSELL_OFFER
        )
        if not isinstance(has_lawyer, bool):
            self._reject(
                session,
                InputRejected(
                    "Please tell us whether your company provides a lawyer",
                    "has_lawyer",
                ),
            )
        visa = self._validated(
            session, lambda: validate_visa_type(visa_type, required=has_lawyer)
        )
        answers = session.answers.update(has_lawyer=has_lawyer, visa_type=visa)
        return await self._advance(
            "submit_offer", answers, VISA_OFFER_PROCESSING_FAILED
        )

    async def accept_offer(self) -> Step:
        """Accept the discounted-price offer on a still-searching step."""
        session = self._require_step(
            "accept_offer",
            Step.JOB_SEARCH_DOWNSELL,
            Step.JOB_SEARCH_SURVEY,
            Step.CANCELLATION_REASON,
        )
        answers = session.answers.update(accepted_downsell=True)
        code = (
            REASON_PROCESSING_FAILED
            if session.current_step is Step.CANCELLATION_REASON
            else StepUpdateFailed.error_code
        )
        return await self._advance("accept_offer", answers, code)

    async def decline_offer(self) -> Step:
        """Decline the job-search downsell offer."""
        session = self._require_step("decline_offer", Step.JOB_SEARCH_DOWNSELL)
        answers = session.answers.update(accepted_downsell=False)
        return await self._advance("decline_offer", answers, StepUpdateFailed.error_code)

    async def finish(self) -> Step:
        """Leave the subscription-continued screen and keep going.

        This only navigates; the offer acceptance is finalized by ``close``
        on the subscription-continued screen, or superseded by a later
        terminal step.
        """
        session = self._require_step("finish", Step.SUBSCRIPTION_CONTINUED)
        return await self._advance("finish", session.answers, StepUpdateFailed.error_code)

    async def submit_job_search_survey(
        self,
        roles_applied: str,
        companies_emailed: str,
        companies_interviewed: str,
    ) -> Step:
        """Complete the job-search survey without accepting the offer."""
        session = self._require_step("proceed", Step.JOB_SEARCH_SURVEY)
        survey = self._validated(
            session,
            lambda: validate_survey_answers(
                roles_applied, companies_emailed, companies_interviewed
            ),
        )
        answers = session.answers.update(accepted_downsell=False, **survey)
        return await self._advance("proceed", answers, SURVEY_PROCESSING_FAILED)

    async def submit_cancellation_reason(self, reason: str, details: str) -> Step:
        """Complete the cancellation-reason step without accepting the offer."""
        session = self._require_step("proceed", Step.CANCELLATION_REASON)
        reason, details = self._validated(
            session, lambda: validate_cancellation_reason(reason, details)
        )
        answers = session.answers.update(
            accepted_downsell=False,
            cancellation_reason=reason,
            cancellation_reason_details=details,
        )
        return await self._advance("proceed", answers, REASON_PROCESSING_FAILED)

    async def back(self) -> Step:
        """Return to the step that actually preceded the current one."""
        session = self._require_ready("back")
        previous = self._history.previous()
        if previous is None:
            raise InvalidTransition(session.current_step.value, "back")
        return await self._advance(
            "back", session.answers, StepUpdateFailed.error_code, dest=previous
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _advance(
        self,
        event: str,
        answers: Answers,
        error_code: str,
        dest: Step | None = None,
    ) -> Step:
        """Apply an event, then persist without blocking the user."""
        session = self._require_ready(event)
        plan = plan_transition(session.current_step, event, answers, session.variant, dest)

        session.answers = answers
        if event == "back":
            self._history.pop()
        else:
            self._history.record(plan.source, plan.target)
        if plan.target is Step.SUBSCRIPTION_CONTINUED:
            self._accepted_at = plan.source
        session.current_step = plan.target

        logger.info(
            "Session %s: %s --%s--> %s",
            session.id,
            plan.source.value,
            event,
            plan.target.value,
        )

        if session.final_outcome is None and plan.outcome is not None:
            await self._finalize(session, plan.target, plan.outcome)
        else:
            fields = answers.to_record_fields()
            fields["cancellation_step"] = plan.target
            await self._dispatch(
                self._persist_step(session, plan.target, fields, error_code)
            )
        return plan.target

    async def _finalize(
        self,
        session: CancellationSession,
        step: Step,
        outcome: Outcome,
        accepted_at: Step | None = None,
    ) -> None:
        """Record the write-once outcome, update the subscription, notify."""
        if session.final_outcome is not None:
            logger.warning(
                "Session %s already finalized as %s; ignoring %s",
                session.id,
                session.final_outcome.value,
                outcome.value,
            )
            return

        status = subscription_status_for(outcome, accepted_at)
        session.final_outcome = outcome
        fields = session.answers.to_record_fields()
        fields["cancellation_step"] = step
        fields["final_outcome"] = outcome
        await self._dispatch(self._persist_final(session, fields, outcome, status))
        self._notify(remains_active(status))

    async def _dispatch(self, operation: Awaitable[None]) -> None:
        """Run a persistence coroutine inline or as a background task."""
        if self.config.persistence_mode is PersistenceMode.AWAIT:
            await operation
            return
        task = asyncio.ensure_future(operation)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist_step(
        self,
        session: CancellationSession,
        step: Step,
        fields: dict[str, Any],
        error_code: str,
    ) -> None:
        """Persist the answers so far. Failures are logged, never raised.

        The lock is held across every attempt, so a later transition's write
        cannot land between a failed attempt and its retry.
        """
        try:
            async with self._write_lock:
                await with_retry(
                    lambda: self._update(session, fields, StepUpdateFailed),
                    max_retries=self.config.persist_retries,
                    retry_on=(TransientError, StepUpdateFailed),
                    backoff=self.config.retry_backoff,
                )
        except Exception as e:
            error = self._record_error(error_code, str(e) or type(e).__name__, step)
            self.audit.log_security_event(
                "cancellation_step_update_failed",
                session.user_id,
                {"error": error.to_dict(), "sessionId": session.id},
            )
            logger.warning("Persisting step %s failed: %s", step.value, e)
            return

        self.audit.log_security_event(
            "cancellation_step_updated",
            session.user_id,
            {
                "sessionId": session.id,
                "step": step.value,
                "updateFields": sorted(k for k, v in fields.items() if v is not None),
            },
        )

    async def _persist_final(
        self,
        session: CancellationSession,
        fields: dict[str, Any],
        outcome: Outcome,
        status: SubscriptionStatus | None,
    ) -> None:
        """Persist the outcome and subscription status. Failures are logged."""
        try:
            async with self._write_lock:
                await with_retry(
                    lambda: self._update(session, fields, FinalizationFailed),
                    max_retries=self.config.persist_retries,
                    retry_on=(TransientError, FinalizationFailed),
                    backoff=self.config.retry_backoff,
                )
                if status is not None:
                    await with_retry(
                        lambda: self._update_subscription(session.user_id, status),
                        max_retries=self.config.persist_retries,
                        retry_on=(TransientError, FinalizationFailed),
                        backoff=self.config.retry_backoff,
                    )
        except Exception as e:
            error = self._record_error(
                FinalizationFailed.error_code, str(e) or type(e).__name__, session.current_step
            )
            self.audit.log_security_event(
                "cancellation_finalization_failed",
                session.user_id,
                {"error": error.to_dict(), "sessionId": session.id},
            )
            logger.error("Finalizing session %s failed: %s", session.id, e)
            return

        self.audit.log_security_event(
            "cancellation_finalized",
            session.user_id,
            {
                "sessionId": session.id,
                "outcome": outcome.value,
                "subscriptionStatus": status.value if status else None,
            },
        )

    async def _update(
        self,
        session: CancellationSession,
        fields: dict[str, Any],
        failure: type[StepUpdateFailed] | type[FinalizationFailed],
    ) -> None:
        """Sanitize and write a partial cancellation record.

        Callers hold ``_write_lock``.
        """
        sanitized = sanitize_for_store(fields, self.config.max_text_length)
        ok = await self.store.update_cancellation(session.id, session.user_id, sanitized)
        if not ok:
            raise failure("Database update failed")
        session.last_updated = datetime.now(timezone.utc)

    async def _update_subscription(
        self, user_id: str, status: SubscriptionStatus
    ) -> None:
        ok = await self.store.update_subscription_status(user_id, status)
        if not ok:
            raise FinalizationFailed("Failed to update subscription status")

    def _notify(self, subscription_remains_active: bool) -> None:
        """Invoke the completion callback, at most once per session."""
        if self._outcome_notified:
            return
        self._outcome_notified = True
        self.on_outcome(subscription_remains_active)

    def _require_ready(self, event: str) -> CancellationSession:
        if self.status is not FlowStatus.READY or self.session is None:
            raise InvalidTransition(self.status.value, event)
        return self.session

    def _require_step(self, event: str, *steps: Step) -> CancellationSession:
        session = self._require_ready(event)
        if session.current_step not in steps:
            raise InvalidTransition(session.current_step.value, event)
        return session

    def _validated(self, session: CancellationSession, check: Callable[[], T]) -> T:
        """Run a validator, auditing and re-raising any rejection."""
        try:
            return check()
        except InputRejected as e:
            self._reject(session, e)
            raise

    def _reject(self, session: CancellationSession, error: InputRejected) -> None:
        """Record a validation failure; raises the given error."""
        flow_error = self._record_error(
            InputRejected.error_code, str(error), session.current_step
        )
        self.audit.log_security_event(
            "cancellation_validation_failed",
            session.user_id,
            {"error": flow_error.to_dict(), "field": error.field},
        )
        raise error

    def _record_error(self, code: str, message: str, step: Step | None) -> FlowError:
        self.error = FlowError(
            code=code,
            message=message,
            step=step,
            user_id=self._user_id,
            timestamp=datetime.now(timezone.utc),
        )
        return self.error

    def _reset(self) -> None:
        """Discard in-memory flow state; background writes keep running."""
        self.status = FlowStatus.CLOSED
        self.session = None
        self.subscription = None
        self._history.clear()
        self._accepted_at = None
        self._outcome_notified = False


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    retry_on: tuple[type[Exception], ...] = (TransientError,),
    backoff: float = 1.0,
) -> T:
    """Execute operation with retry for transient failures.

    Implements exponential backoff between attempts.

    Args:
        operation: Async callable to execute.
        max_retries: Maximum number of attempts.
        retry_on: Tuple of exception types to retry on.
        backoff: Seconds to wait after the first failure, doubled each time.

    Returns:
        The result of the operation.

    Raises:
        The last exception if all retries fail.
    """
    last_error: Exception | None = None
    for attempt in range(max_retries):
        try:
            return await operation()
        except retry_on as e:
            last_error = e
            if attempt < max_retries - 1:
                await asyncio.sleep(backoff * 2**attempt)  # Exponential backoff
    if last_error:
        raise last_error
    raise RuntimeError("No retries attempted")
