"""
Version Manager

Decides whether an edit forks a new campaign version and performs the
version bump: status reset to legal review, forward-copy of untouched
sub-configs, a materially-changed version row and a VERSION_BUMP audit
entry. The whole edit, including the caller's mutation, runs in one
repository transaction.
"""

import logging
from typing import Awaitable, Callable, List, Optional
from uuid import uuid4

from .audit_trail import AuditTrail, compute_diff
from .models import (
    Actor,
    AuditAction,
    AuditEntityType,
    EditKind,
    LegalStatus,
    Nba,
    NbaSnapshot,
    NbaStatus,
    NbaVersion,
    VersionDiff,
    utc_now,
)
from .protocols import InvalidTransitionError, NbaNotFoundError, NbaRepositoryProtocol

logger = logging.getLogger(__name__)

Mutation = Callable[[Nba, int], Awaitable[None]]

GENERAL_FIELDS = {
    "name",
    "description",
    "start_date",
    "end_date",
    "priority",
    "arbitration_weight",
}

VERSIONED_KINDS = (EditKind.AUDIENCE, EditKind.ACTION, EditKind.BENEFIT, EditKind.COMMS)

# No way back to legal review from these, so material edits are refused
CLOSED_STATUSES = frozenset({NbaStatus.ARCHIVED, NbaStatus.CANCELLED, NbaStatus.COMPLETED})


class VersionManager:
    """Material-change policy and version bookkeeping"""

    def __init__(self, repository: NbaRepositoryProtocol, audit_trail: AuditTrail):
        self.repository = repository
        self.audit_trail = audit_trail

    @staticmethod
    def is_material(status: NbaStatus, edit_kind: EditKind) -> bool:
        """Any non-general edit outside Draft forks a new version"""
        return status != NbaStatus.DRAFT and edit_kind != EditKind.GENERAL

    async def _get_nba(self, nba_id: str) -> Nba:
        nba = await self.repository.get_nba(nba_id)
        if not nba:
            raise NbaNotFoundError(f"NBA not found: {nba_id}")
        return nba

    # ====================
    # Snapshots
    # ====================

    async def build_snapshot(self, nba: Nba, version: int) -> NbaSnapshot:
        """Assemble the stored sub-configs of one version"""
        return NbaSnapshot(
            version=version,
            general=nba.model_dump(mode="json", include=GENERAL_FIELDS),
            audience=await self.repository.get_audience(nba.nba_id, version),
            action=await self.repository.get_action(nba.nba_id, version),
            benefit=await self.repository.get_benefit(nba.nba_id, version),
            comms=await self.repository.list_templates(nba.nba_id, version),
        )

    async def refresh_snapshot(self, nba_id: str, version: int) -> NbaSnapshot:
        nba = await self._get_nba(nba_id)
        snapshot = await self.build_snapshot(nba, version)
        await self.repository.update_version_snapshot(nba_id, version, snapshot)
        return snapshot

    async def create_initial_version(
        self,
        nba: Nba,
        actor: Actor,
        change_summary: str = "Initial draft",
    ) -> NbaVersion:
        """Version 1 of a freshly inserted campaign"""
        return await self.repository.insert_version(
            NbaVersion(
                nba_id=nba.nba_id,
                version=1,
                snapshot=await self.build_snapshot(nba, 1),
                material_change=False,
                change_summary=change_summary,
                created_by=actor.actor_id,
            )
        )

    # ====================
    # Edits
    # ====================

    async def apply_edit(
        self,
        nba_id: str,
        edit_kind: EditKind,
        mutate: Mutation,
        actor: Actor,
        change_summary: Optional[str] = None,
    ) -> int:
        """
        Apply an edit and return the version it landed on.

        Non-material edits mutate the current version in place. Material
        edits bump the version first and mutate the new one.
        """
        async with self.repository.transaction():
            nba = await self._get_nba(nba_id)

            if not self.is_material(nba.status, edit_kind):
                await mutate(nba, nba.current_version)
                await self.refresh_snapshot(nba_id, nba.current_version)
                return nba.current_version

            if nba.status in CLOSED_STATUSES:
                logger.info(f"Refused {edit_kind.value} edit on NBA {nba_id} in {nba.status.value}")
                raise InvalidTransitionError(nba.status, NbaStatus.IN_LEGAL_REVIEW)

            nba = await self._bump_version(nba, edit_kind, actor, change_summary)
            await mutate(nba, nba.current_version)
            await self.refresh_snapshot(nba_id, nba.current_version)
            return nba.current_version

    async def _bump_version(
        self,
        nba: Nba,
        edit_kind: EditKind,
        actor: Actor,
        change_summary: Optional[str],
    ) -> Nba:
        previous = nba.current_version
        target = previous + 1
        before = {"current_version": previous, "status": nba.status}

        nba = nba.model_copy(update={
            "current_version": target,
            "status": NbaStatus.IN_LEGAL_REVIEW,
            "updated_at": utc_now(),
        })
        await self.repository.update_nba(nba)

        await self.forward_copy(nba.nba_id, previous, target, exclude=edit_kind)

        await self.repository.insert_version(
            NbaVersion(
                nba_id=nba.nba_id,
                version=target,
                snapshot=await self.build_snapshot(nba, target),
                material_change=True,
                change_summary=change_summary or f"Material {edit_kind.value} change",
                created_by=actor.actor_id,
            )
        )

        await self.audit_trail.record(
            actor,
            AuditAction.VERSION_BUMP,
            AuditEntityType.NBA,
            nba.nba_id,
            before=before,
            after={"current_version": target, "status": NbaStatus.IN_LEGAL_REVIEW},
        )

        logger.info(
            f"NBA {nba.nba_id} bumped v{previous} -> v{target} "
            f"({edit_kind.value} edit in {before['status'].value})"
        )
        return nba

    async def forward_copy(
        self,
        nba_id: str,
        source_version: int,
        target_version: int,
        exclude: Optional[EditKind] = None,
    ) -> List[EditKind]:
        """
        Copy sub-configs from one version to another unless already present.

        Copied templates go back to In Review. Safe to call repeatedly for
        the same target; returns the kinds that actually inserted rows.
        """
        copied: List[EditKind] = []

        for kind in VERSIONED_KINDS:
            if kind == exclude:
                continue

            inserted = False
            if kind == EditKind.AUDIENCE:
                audience = await self.repository.get_audience(nba_id, source_version)
                if audience:
                    inserted = await self.repository.insert_audience_if_absent(
                        nba_id, target_version, audience
                    )
            elif kind == EditKind.ACTION:
                action = await self.repository.get_action(nba_id, source_version)
                if action:
                    inserted = await self.repository.insert_action_if_absent(
                        nba_id, target_version, action
                    )
            elif kind == EditKind.BENEFIT:
                benefit = await self.repository.get_benefit(nba_id, source_version)
                if benefit:
                    inserted = await self.repository.insert_benefit_if_absent(
                        nba_id, target_version, benefit
                    )
            else:
                for template in await self.repository.list_templates(nba_id, source_version):
                    copy = template.model_copy(update={
                        "template_id": f"tpl_{uuid4().hex[:16]}",
                        "version": target_version,
                        "legal_status": LegalStatus.IN_REVIEW,
                        "updated_at": utc_now(),
                    })
                    if await self.repository.insert_template_if_absent(copy):
                        inserted = True

            if inserted:
                copied.append(kind)

        logger.debug(
            f"Forward-copied {[k.value for k in copied]} for NBA {nba_id} "
            f"v{source_version} -> v{target_version}"
        )
        return copied

    # ====================
    # Version history
    # ====================

    async def list_versions(self, nba_id: str) -> List[NbaVersion]:
        await self._get_nba(nba_id)
        return await self.repository.list_versions(nba_id)

    async def diff_versions(self, nba_id: str, from_version: int, to_version: int) -> VersionDiff:
        """Structured changes between two version snapshots"""
        source = await self.repository.get_version(nba_id, from_version)
        target = await self.repository.get_version(nba_id, to_version)
        if not source or not target:
            raise NbaNotFoundError(
                f"Snapshots not found for NBA {nba_id} versions {from_version}/{to_version}"
            )
        return VersionDiff(
            nba_id=nba_id,
            from_version=from_version,
            to_version=to_version,
            changes=compute_diff(source.snapshot, target.snapshot),
        )


__all__ = ["VersionManager", "GENERAL_FIELDS", "CLOSED_STATUSES"]
