"""Core protocols and data types for cancelflow.

This module defines the foundational types and protocols that all other
components depend on. It includes:
- Enums for wizard steps, A/B variants, outcomes and subscription status
- Data classes for stored records, accumulated answers and the live session
- Protocol definitions for the cancellation store and the audit sink
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from cancelflow.utils.validation import CANCELLATION_REASONS


class Step(Enum):
    """Steps of the cancellation wizard.

    Steps are organized into logical groups:
    - Entry: INITIAL
    - Found-a-job branch: SURVEY, FEEDBACK, VISA_OFFER, DOWNSELL_OFFER
    - Still-searching branch: JOB_SEARCH_DOWNSELL, JOB_SEARCH_SURVEY,
      CANCELLATION_REASON, SUBSCRIPTION_CONTINUED
    - Terminal: COMPLETION, YES_LAWYER_COMPLETION, FINAL_CANCELLATION
    """

    INITIAL = "initial"
    SURVEY = "survey"
    FEEDBACK = "feedback"
    VISA_OFFER = "visa-offer"
    DOWNSELL_OFFER = "downsell-offer"
    JOB_SEARCH_DOWNSELL = "job-search-downsell"
    JOB_SEARCH_SURVEY = "job-search-survey"
    CANCELLATION_REASON = "cancellation-reason"
    SUBSCRIPTION_CONTINUED = "subscription-continued"
    COMPLETION = "completion"
    YES_LAWYER_COMPLETION = "yes-lawyer-completion"
    FINAL_CANCELLATION = "final-cancellation"

    @property
    def is_terminal(self) -> bool:
        """True for steps whose only exit is leaving the wizard."""
        return self in TERMINAL_STEPS


TERMINAL_STEPS = frozenset(
    {Step.COMPLETION, Step.YES_LAWYER_COMPLETION, Step.FINAL_CANCELLATION}
)


class Variant(Enum):
    """A/B experiment bucket. B sees the job-search downsell step."""

    A = "A"
    B = "B"


class Outcome(Enum):
    """Final outcome of a cancellation attempt, written once."""

    CANCELLED = "cancelled"
    CONTINUED = "continued"
    DOWNSELL_ACCEPTED = "downsell_accepted"
    ABANDONED = "abandoned"
    ERROR = "error"


class SubscriptionStatus(Enum):
    """Status field of a subscription record."""

    ACTIVE = "active"
    PENDING_CANCELLATION = "pending_cancellation"
    CANCELLED = "cancelled"


class FlowStatus(Enum):
    """Lifecycle of the flow controller itself."""

    CLOSED = "closed"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class SideEffect(Enum):
    """Side effects a transition asks the controller to perform."""

    PERSIST_ANSWERS = "persist_answers"
    FINALIZE = "finalize"
    UPDATE_SUBSCRIPTION = "update_subscription"
    NOTIFY_OUTCOME = "notify_outcome"


def _parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp from a store row."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _parse_enum(enum_cls: type[Enum], value: Any) -> Any:
    if value is None or isinstance(value, enum_cls):
        return value
    return enum_cls(value)


@dataclass
class Subscription:
    """A subscription row.

    Attributes:
        id: Subscription identifier.
        user_id: Owning user.
        monthly_price: Current monthly price in dollars.
        status: Subscription status.
        created_at: Creation timestamp.
        updated_at: Last update timestamp.
    """

    id: str
    user_id: str
    monthly_price: float
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> Subscription:
        """Build from a store row using the wire field names."""
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            monthly_price=float(row.get("monthly_price") or 0),
            status=_parse_enum(SubscriptionStatus, row.get("status") or "active"),
            created_at=_parse_timestamp(row.get("created_at")),
            updated_at=_parse_timestamp(row.get("updated_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire shape."""
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class CancellationRecord:
    """A stored cancellation row, one per user attempt.

    Field names match the wire/storage shape.
    """

    id: str
    user_id: str
    subscription_id: str
    downsell_variant: Variant
    cancellation_step: Step | None = None
    job_found: bool | None = None
    found_with_migrate_mate: bool | None = None
    feedback_text: str | None = None
    reason: str | None = None
    visa_type: str | None = None
    has_lawyer: bool | None = None
    accepted_downsell: bool = False
    final_outcome: Outcome | None = None
    roles_applied: str | None = None
    companies_emailed: str | None = None
    companies_interviewed: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> CancellationRecord:
        """Build from a store row, ignoring unknown columns."""
        known = {f.name for f in fields(cls)}
        data = {key: value for key, value in row.items() if key in known}
        data["id"] = str(data["id"])
        data["downsell_variant"] = _parse_enum(Variant, data.get("downsell_variant"))
        data["cancellation_step"] = _parse_enum(Step, data.get("cancellation_step"))
        data["final_outcome"] = _parse_enum(Outcome, data.get("final_outcome"))
        data["accepted_downsell"] = bool(data.get("accepted_downsell") or False)
        data["created_at"] = _parse_timestamp(data.get("created_at"))
        data["updated_at"] = _parse_timestamp(data.get("updated_at"))
        return cls(**data)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire shape, enums reduced to their values."""
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Enum):
                data[key] = value.value
        return data


def join_reason(reason: str | None, details: str | None) -> str | None:
    """Combine a reason and its details into the stored ``reason`` column."""
    if reason is None:
        return None
    return f"{reason}: {details}" if details else reason


def split_reason(stored: str | None) -> tuple[str | None, str | None]:
    """Split the stored ``reason`` column back into reason and details."""
    if not stored:
        return None, None
    for reason in CANCELLATION_REASONS:
        if stored == reason:
            return reason, None
        if stored.startswith(f"{reason}: "):
            return reason, stored[len(reason) + 2 :]
    return stored, None


@dataclass(frozen=True)
class Answers:
    """Answers accumulated so far in one traversal of the wizard.

    Immutable: each submitted step produces a new value via ``update``.
    """

    job_found: bool | None = None
    found_with_migrate_mate: bool | None = None
    roles_applied: str | None = None
    companies_emailed: str | None = None
    companies_interviewed: str | None = None
    feedback_text: str | None = None
    visa_type: str | None = None
    has_lawyer: bool | None = None
    accepted_downsell: bool = False
    cancellation_reason: str | None = None
    cancellation_reason_details: str | None = None

    def update(self, **changes: Any) -> Answers:
        """Return a copy with the given answers replaced."""
        return replace(self, **changes)

    def to_record_fields(self) -> dict[str, Any]:
        """Map the answers onto cancellation record columns."""
        return {
            "job_found": self.job_found,
            "found_with_migrate_mate": self.found_with_migrate_mate,
            "roles_applied": self.roles_applied,
            "companies_emailed": self.companies_emailed,
            "companies_interviewed": self.companies_interviewed,
            "feedback_text": self.feedback_text,
            "visa_type": self.visa_type,
            "has_lawyer": self.has_lawyer,
            "accepted_downsell": self.accepted_downsell,
            "reason": join_reason(
                self.cancellation_reason, self.cancellation_reason_details
            ),
        }

    @classmethod
    def from_record(cls, record: CancellationRecord) -> Answers:
        """Rebuild pre-fill answers from a stored record."""
        reason, details = split_reason(record.reason)
        return cls(
            job_found=record.job_found,
            found_with_migrate_mate=record.found_with_migrate_mate,
            roles_applied=record.roles_applied,
            companies_emailed=record.companies_emailed,
            companies_interviewed=record.companies_interviewed,
            feedback_text=record.feedback_text,
            visa_type=record.visa_type,
            has_lawyer=record.has_lawyer,
            accepted_downsell=record.accepted_downsell,
            cancellation_reason=reason,
            cancellation_reason_details=details,
        )


@dataclass
class CancellationSession:
    """In-memory state of one user's traversal, backed by one record.

    Attributes:
        id: Record identifier assigned by the store.
        user_id: Owning user.
        subscription_id: The subscription being cancelled.
        variant: A/B bucket, fixed for the user.
        current_step: The single active step.
        answers: Answers collected so far (pre-filled on resume).
        final_outcome: Written once at the terminal transition.
        started_at: When the record was created.
        last_updated: Bumped on every persisted mutation.
        resumed: Whether this session picked up an existing record.
    """

    id: str
    user_id: str
    subscription_id: str
    variant: Variant
    current_step: Step = Step.INITIAL
    answers: Answers = field(default_factory=Answers)
    final_outcome: Outcome | None = None
    started_at: datetime | None = None
    last_updated: datetime | None = None
    resumed: bool = False


@dataclass(frozen=True)
class StepProgress:
    """Display-only position of a step within the branch taken.

    Attributes:
        ordinal: 1-based position (0 for the entry step).
        total: Number of steps in this traversal, terminal step included.
    """

    ordinal: int
    total: int

    @property
    def label(self) -> str:
        """Text such as "Step 2 of 3", or "Completed" on the last step."""
        if self.ordinal <= 0:
            return "Start"
        if self.ordinal >= self.total:
            return "Completed"
        return f"Step {self.ordinal} of {self.total - 1}"


@dataclass(frozen=True)
class DownsellOffer:
    """A discounted-price retention offer.

    Attributes:
        original_price: Current monthly price.
        discounted_price: Monthly price while the offer applies.
        discount_percentage: Percentage taken off.
        description: Short text for the offer button.
    """

    original_price: float
    discounted_price: float
    discount_percentage: int
    description: str


@dataclass(frozen=True)
class VariantAssignment:
    """Variant lookup result for analytics and debugging.

    Attributes:
        user_id: The user.
        variant: Their bucket.
        source: ``stored``, ``computed`` or ``fallback``.
        assigned_at: When this lookup happened.
    """

    user_id: str
    variant: Variant
    source: str
    assigned_at: datetime


@dataclass(frozen=True)
class FlowError:
    """Record of the latest error surfaced by the flow controller.

    Attributes:
        code: Error taxonomy code, e.g. ``INITIALIZATION_FAILED``.
        message: Human-readable description.
        step: The step the error happened on, if any.
        user_id: The user concerned.
        timestamp: When the error happened.
    """

    code: str
    message: str
    step: Step | None
    user_id: str | None
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for audit details."""
        return {
            "code": self.code,
            "message": self.message,
            "step": self.step.value if self.step else None,
            "userId": self.user_id,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class TransitionPlan:
    """Result of the pure transition function.

    Attributes:
        source: Step before the event.
        target: Step after the event.
        event: The event that was applied.
        effects: Side effects the controller must perform.
        outcome: Terminal outcome, set only when the target is terminal.
    """

    source: Step
    target: Step
    event: str
    effects: tuple[SideEffect, ...]
    outcome: Outcome | None = None


class CancellationStoreProtocol(Protocol):
    """Narrow async interface to the record store.

    Lookups and creation raise ``StoreUnavailable`` when the backend cannot
    be reached; updates report failure through their return value.
    """

    async def get_subscription(self, user_id: str) -> Subscription | None:
        """Most recent active subscription of the user."""
        ...

    async def get_cancellation(self, user_id: str) -> CancellationRecord | None:
        """Most recent cancellation record of the user."""
        ...

    async def create_cancellation(self, fields: dict[str, Any]) -> CancellationRecord:
        """Insert a cancellation record and return it with its id."""
        ...

    async def update_cancellation(
        self, cancellation_id: str, user_id: str, fields: dict[str, Any]
    ) -> bool:
        """Apply a partial update scoped to both id and user, stamping updated_at."""
        ...

    async def update_subscription_status(
        self, user_id: str, status: SubscriptionStatus
    ) -> bool:
        """Set the status of the user's subscription."""
        ...


class AuditLoggerProtocol(Protocol):
    """Structured security/audit log sink."""

    def log_security_event(
        self,
        event: str,
        user_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> Any:
        """Record an event with the user and context it concerns."""
        ...
