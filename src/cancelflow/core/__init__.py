"""Core module for cancelflow business logic.

This module exports the foundational types, the pure flow logic and the
flow controller used throughout cancelflow.
"""

from cancelflow.core.engine import CancellationFlow, with_retry
from cancelflow.core.flow import (
    StepHistory,
    build_downsell_offer,
    plan_transition,
    step_progress,
    subscription_status_for,
)
from cancelflow.core.protocols import (
    Answers,
    AuditLoggerProtocol,
    CancellationRecord,
    CancellationSession,
    CancellationStoreProtocol,
    DownsellOffer,
    FlowError,
    FlowStatus,
    Outcome,
    SideEffect,
    Step,
    StepProgress,
    Subscription,
    SubscriptionStatus,
    TransitionPlan,
    Variant,
    VariantAssignment,
)
from cancelflow.core.states import WizardStateMachine
from cancelflow.core.variant import VariantResolver, compute_variant

__all__ = [
    "Answers",
    "AuditLoggerProtocol",
    "CancellationFlow",
    "CancellationRecord",
    "CancellationSession",
    "CancellationStoreProtocol",
    "DownsellOffer",
    "FlowError",
    "FlowStatus",
    "Outcome",
    "SideEffect",
    "Step",
    "StepHistory",
    "StepProgress",
    "Subscription",
    "SubscriptionStatus",
    "TransitionPlan",
    "Variant",
    "VariantAssignment",
    "VariantResolver",
    "WizardStateMachine",
    "build_downsell_offer",
    "compute_variant",
    "plan_transition",
    "step_progress",
    "subscription_status_for",
    "with_retry",
]
