"""A/B variant assignment for the downsell experiment.

Users are bucketed by a salted SHA-256 of their id so the assignment can
be recomputed from the id alone. Once a cancellation record carries a
variant, that stored value is authoritative: it is returned as-is even if
the salt or the algorithm has changed since.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone

from cancelflow.core.protocols import (
    AuditLoggerProtocol,
    CancellationRecord,
    CancellationStoreProtocol,
    Variant,
    VariantAssignment,
)
from cancelflow.utils.config import DEFAULT_AB_SALT

logger = logging.getLogger(__name__)

FALLBACK_VARIANT = Variant.A

_LOOKUP = object()


def hash_user_id(user_id: str, salt: str = DEFAULT_AB_SALT) -> int:
    """Integer value of the first 4 bytes of SHA-256(user_id + salt).

    Raises:
        ValueError: If ``user_id`` is empty or not a string.
    """
    if not user_id or not isinstance(user_id, str):
        raise ValueError("Invalid user ID for variant assignment")
    digest = hashlib.sha256((user_id + salt).encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big")


def compute_variant(user_id: str, salt: str = DEFAULT_AB_SALT) -> Variant:
    """Deterministic 50/50 bucket: odd hash is B, even hash is A."""
    return Variant.B if hash_user_id(user_id, salt) % 2 else Variant.A


def is_valid_variant(value: object) -> bool:
    """Check whether a raw value names a variant."""
    if isinstance(value, Variant):
        return True
    return value in ("A", "B")


class VariantResolver:
    """Resolves a user's variant, preferring the persisted value.

    Attributes:
        store: Cancellation store used to look up an existing record.
        audit: Security/audit log sink.
        salt: Secret salt mixed into the hash.
    """

    def __init__(
        self,
        store: CancellationStoreProtocol,
        audit: AuditLoggerProtocol,
        salt: str = DEFAULT_AB_SALT,
    ) -> None:
        self.store = store
        self.audit = audit
        self.salt = salt

    async def get_or_assign_variant(
        self,
        user_id: str,
        existing: CancellationRecord | None | object = _LOOKUP,
    ) -> Variant:
        """Return the stored variant, or compute one if none is stored.

        Args:
            user_id: The user to bucket.
            existing: The user's latest cancellation record when the caller
                already loaded it; looked up from the store otherwise.

        Returns:
            The user's variant. Falls back to A on any error; the fallback
            is never persisted as authoritative.
        """
        variant, _ = await self._resolve(user_id, existing)
        return variant

    async def should_show_downsell_offers(self, user_id: str) -> bool:
        """True iff the user is in variant B."""
        try:
            variant = await self.get_or_assign_variant(user_id)
        except Exception as e:
            self.audit.log_security_event(
                "ab_downsell_check_failed", user_id, {"error": str(e)}
            )
            return False

        show_offers = variant is Variant.B
        self.audit.log_security_event(
            "ab_downsell_check",
            user_id,
            {
                "variant": variant.value,
                "showOffers": show_offers,
                "decision": "show_downsell" if show_offers else "skip_downsell",
            },
        )
        return show_offers

    async def get_variant_info(self, user_id: str) -> VariantAssignment:
        """Variant lookup result with its source, for analytics and debugging."""
        variant, source = await self._resolve(user_id, _LOOKUP)
        return VariantAssignment(
            user_id=user_id,
            variant=variant,
            source=source,
            assigned_at=datetime.now(timezone.utc),
        )

    async def _resolve(
        self, user_id: str, existing: CancellationRecord | None | object
    ) -> tuple[Variant, str]:
        try:
            if not user_id or not isinstance(user_id, str):
                raise ValueError("Invalid user ID")

            if existing is _LOOKUP:
                existing = await self.store.get_cancellation(user_id)

            if isinstance(existing, CancellationRecord) and existing.downsell_variant:
                stored = existing.downsell_variant
                self._check_mismatch(user_id, stored, existing.id)
                self.audit.log_security_event(
                    "ab_variant_retrieved",
                    user_id,
                    {"variant": stored.value, "source": "existing_cancellation"},
                )
                return stored, "stored"

            hashed = hash_user_id(user_id, self.salt)
            variant = Variant.B if hashed % 2 else Variant.A
            self.audit.log_security_event(
                "ab_variant_new_assignment",
                user_id,
                {
                    "variant": variant.value,
                    "hash": hashed % 1000,  # last digits only
                    "method": "cryptographic_hash",
                    "source": "new_assignment",
                },
            )
            return variant, "computed"
        except Exception as e:
            logger.warning("Variant assignment failed for %s: %s", user_id, e)
            self.audit.log_security_event(
                "ab_variant_error", user_id, {"error": str(e)}
            )
            return FALLBACK_VARIANT, "fallback"

    def _check_mismatch(self, user_id: str, stored: Variant, record_id: str) -> None:
        """Log when the stored variant differs from a fresh computation."""
        calculated = compute_variant(user_id, self.salt)
        if calculated is not stored:
            self.audit.log_security_event(
                "variant_mismatch_detected",
                user_id,
                {
                    "existingVariant": stored.value,
                    "calculatedVariant": calculated.value,
                    "cancellationId": record_id,
                },
            )
