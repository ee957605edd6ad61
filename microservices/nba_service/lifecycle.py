"""
Lifecycle State Machine

Validates and applies campaign status transitions. Activation is gated on
every template of the current version being legally approved, and
campaigns whose validity window has ended are reconciled to Expired.
"""

import logging
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Union

from .audit_trail import AuditTrail
from .models import (
    Actor,
    ActorRole,
    AuditAction,
    AuditEntityType,
    LegalStatus,
    Nba,
    NbaStatus,
    as_utc,
    utc_now,
)
from .protocols import (
    InvalidTransitionError,
    LegalApprovalRequiredError,
    NbaNotFoundError,
    NbaRepositoryProtocol,
    NbaValidationError,
)

logger = logging.getLogger(__name__)


# Valid state transitions
ALLOWED_TRANSITIONS: Dict[NbaStatus, FrozenSet[NbaStatus]] = {
    NbaStatus.DRAFT: frozenset({NbaStatus.SUBMITTED, NbaStatus.CANCELLED, NbaStatus.ARCHIVED}),
    NbaStatus.SUBMITTED: frozenset({NbaStatus.IN_LEGAL_REVIEW, NbaStatus.CANCELLED}),
    NbaStatus.IN_LEGAL_REVIEW: frozenset({NbaStatus.APPROVED, NbaStatus.REJECTED}),
    NbaStatus.REJECTED: frozenset({NbaStatus.DRAFT, NbaStatus.ARCHIVED, NbaStatus.CANCELLED}),
    NbaStatus.APPROVED: frozenset({
        NbaStatus.IN_TESTING, NbaStatus.SCHEDULED, NbaStatus.ARCHIVED, NbaStatus.CANCELLED,
    }),
    NbaStatus.IN_TESTING: frozenset({NbaStatus.APPROVED, NbaStatus.SCHEDULED, NbaStatus.CANCELLED}),
    NbaStatus.SCHEDULED: frozenset({NbaStatus.PUBLISHING, NbaStatus.CANCELLED, NbaStatus.ARCHIVED}),
    NbaStatus.PUBLISHING: frozenset({NbaStatus.PUBLISHED, NbaStatus.CANCELLED}),
    NbaStatus.PUBLISHED: frozenset({NbaStatus.TERMINATED, NbaStatus.COMPLETED, NbaStatus.EXPIRED}),
    NbaStatus.EXPIRED: frozenset({NbaStatus.ARCHIVED, NbaStatus.COMPLETED}),
    NbaStatus.TERMINATED: frozenset({NbaStatus.COMPLETED, NbaStatus.ARCHIVED}),
    NbaStatus.COMPLETED: frozenset({NbaStatus.ARCHIVED}),
    NbaStatus.CANCELLED: frozenset({NbaStatus.ARCHIVED}),
    NbaStatus.ARCHIVED: frozenset(),  # Terminal state
}

# Entering these requires every current-version template to be Approved
ACTIVATION_STATUSES = frozenset({NbaStatus.SCHEDULED, NbaStatus.PUBLISHING, NbaStatus.PUBLISHED})

# Statuses that read as Expired once the end date has passed
EXPIRABLE_STATUSES = frozenset({
    NbaStatus.APPROVED,
    NbaStatus.IN_TESTING,
    NbaStatus.SCHEDULED,
    NbaStatus.PUBLISHING,
    NbaStatus.PUBLISHED,
})

_STATUS_ALIASES = {
    alias: status
    for status in NbaStatus
    for alias in (
        status.value.lower(),
        status.value.replace(" ", "").lower(),
        status.name.lower(),
    )
}


def parse_status(value: Union[NbaStatus, str]) -> NbaStatus:
    """Accept a status enum, its display string, or a compact spelling"""
    if isinstance(value, NbaStatus):
        return value
    status = _STATUS_ALIASES.get(str(value).strip().lower())
    if status is None:
        raise NbaValidationError(f"Unknown status: {value}", "status")
    return status


def can_transition(current: NbaStatus, target: NbaStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def effective_status(nba: Nba, now: Optional[datetime] = None) -> NbaStatus:
    """Status as it should read at `now`, without writing anything"""
    if nba.status in EXPIRABLE_STATUSES and nba.end_date < as_utc(now or utc_now()):
        return NbaStatus.EXPIRED
    return nba.status


class LifecycleStateMachine:
    """Applies status transitions and expiry reconciliation"""

    def __init__(
        self,
        repository: NbaRepositoryProtocol,
        audit_trail: AuditTrail,
        system_actor: Optional[Actor] = None,
    ):
        self.repository = repository
        self.audit_trail = audit_trail
        self.system_actor = system_actor or Actor(actor_id="SYSTEM", role=ActorRole.SYSTEM)

    async def pending_templates(self, nba: Nba) -> List[str]:
        """Template ids of the current version that are not Approved"""
        templates = await self.repository.list_templates(nba.nba_id, nba.current_version)
        return [t.template_id for t in templates if t.legal_status != LegalStatus.APPROVED]

    async def transition(
        self,
        nba_id: str,
        next_status: Union[NbaStatus, str],
        actor: Actor,
    ) -> Nba:
        """
        Move a campaign to `next_status`.

        Raises InvalidTransitionError for edges outside the table and
        LegalApprovalRequiredError when activating with unapproved templates.
        """
        target = parse_status(next_status)

        async with self.repository.transaction():
            nba = await self.reconcile(nba_id)

            if not can_transition(nba.status, target):
                logger.info(
                    f"Rejected transition for NBA {nba_id}: {nba.status.value} -> {target.value}"
                )
                raise InvalidTransitionError(nba.status, target)

            if target in ACTIVATION_STATUSES:
                pending = await self.pending_templates(nba)
                if pending:
                    logger.info(
                        f"Activation of NBA {nba_id} blocked: {len(pending)} template(s) "
                        f"awaiting legal approval"
                    )
                    raise LegalApprovalRequiredError(pending)

            before = {"status": nba.status}
            nba = nba.model_copy(update={"status": target, "updated_at": utc_now()})
            await self.repository.update_nba(nba)
            await self.audit_trail.record(
                actor,
                AuditAction.STATUS_TRANSITION,
                AuditEntityType.NBA,
                nba_id,
                before=before,
                after={"status": target},
            )

        logger.info(f"NBA {nba_id} transitioned {before['status'].value} -> {target.value}")
        return nba

    async def reconcile(self, nba_id: str, now: Optional[datetime] = None) -> Nba:
        """Persist Expired for a stale campaign; a no-op otherwise"""
        async with self.repository.transaction():
            nba = await self.repository.get_nba(nba_id)
            if not nba:
                raise NbaNotFoundError(f"NBA not found: {nba_id}")

            if effective_status(nba, now) != NbaStatus.EXPIRED or nba.status == NbaStatus.EXPIRED:
                return nba

            before = {"status": nba.status}
            nba = nba.model_copy(update={"status": NbaStatus.EXPIRED, "updated_at": utc_now()})
            await self.repository.update_nba(nba)
            await self.audit_trail.record(
                self.system_actor,
                AuditAction.STATUS_EXPIRED,
                AuditEntityType.NBA,
                nba_id,
                before=before,
                after={"status": NbaStatus.EXPIRED},
            )

        logger.info(f"NBA {nba_id} expired (was {before['status'].value})")
        return nba

    async def reconcile_all(self, now: Optional[datetime] = None) -> List[Nba]:
        """Sweep every expirable campaign; returns the ones that expired"""
        expired = []
        for nba in await self.repository.list_nbas(statuses=list(EXPIRABLE_STATUSES)):
            if effective_status(nba, now) == NbaStatus.EXPIRED:
                expired.append(await self.reconcile(nba.nba_id, now))
        return expired


__all__ = [
    "ALLOWED_TRANSITIONS",
    "ACTIVATION_STATUSES",
    "EXPIRABLE_STATUSES",
    "parse_status",
    "can_transition",
    "effective_status",
    "LifecycleStateMachine",
]
