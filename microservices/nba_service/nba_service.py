"""
NBA Service Business Logic

Composes the decision core (rule evaluator, version manager, lifecycle
state machine, arbitration engine and audit trail) behind the logical
operations the outer layers call: campaign CRUD, sub-config edits, legal
review, transitions, arbitration, cloning and audit queries.
"""

import logging
import re
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from core.config.nba_config import NbaServiceConfig

from .arbitration import (
    AdditiveEligibilityScoring,
    ArbitrationEngine,
    PriorityWeightedScoring,
)
from .audit_trail import AuditTrail
from .lifecycle import LifecycleStateMachine
from .models import (
    Actor,
    ActorRole,
    ActionConfig,
    ArbitrationDecision,
    AudienceConfig,
    AudienceRequest,
    AudienceSaveResult,
    AuditAction,
    AuditEntityType,
    AuditEntry,
    BenefitConfig,
    CommTemplate,
    CommsRequest,
    Customer,
    EditKind,
    EligibilityReport,
    GeneralUpdateResult,
    LegalApproval,
    LegalInboxItem,
    LegalStatus,
    Nba,
    NbaGeneralRequest,
    NbaStatus,
    NbaVersion,
    VersionDiff,
    utc_now,
)
from .protocols import (
    EventBusProtocol,
    NbaNotFoundError,
    NbaPermissionError,
    NbaRepositoryProtocol,
    NbaValidationError,
)
from .rule_evaluator import count_conditions, size_audience
from .version_manager import VersionManager

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

TOKEN_PATTERN = re.compile(r"\{\{\s*([a-zA-Z0-9_ ]+)\s*\}\}")

SCORING_STRATEGIES = {
    PriorityWeightedScoring.name: PriorityWeightedScoring,
    AdditiveEligibilityScoring.name: AdditiveEligibilityScoring,
}

MAX_NAME_LENGTH = 120


def extract_tokens(text: str) -> List[str]:
    """Sorted, de-duplicated {{token}} names found in a template"""
    return sorted({match.strip() for match in TOKEN_PATTERN.findall(text)})


def parse_request(model_cls: Type[ModelT], data: Any) -> ModelT:
    """Validate boundary input, translating pydantic errors into NbaValidationError"""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        raise NbaValidationError(first["msg"], field) from e


class NbaService:
    """NBA service business logic layer"""

    def __init__(
        self,
        repository: NbaRepositoryProtocol,
        event_bus: Optional[EventBusProtocol] = None,
        config: Optional[NbaServiceConfig] = None,
    ):
        self.repository = repository
        self.event_bus = event_bus
        self.config = config or NbaServiceConfig()

        system_actor = Actor(actor_id=self.config.system_actor_id, role=ActorRole.SYSTEM)
        strategy_cls = SCORING_STRATEGIES.get(self.config.default_scoring_strategy)
        if strategy_cls is None:
            logger.warning(
                f"Unknown scoring strategy '{self.config.default_scoring_strategy}', "
                f"using {PriorityWeightedScoring.name}"
            )
            strategy_cls = PriorityWeightedScoring

        self.audit_trail = AuditTrail(repository)
        self.version_manager = VersionManager(repository, self.audit_trail)
        self.lifecycle = LifecycleStateMachine(repository, self.audit_trail, system_actor)
        self.arbitration = ArbitrationEngine(
            repository,
            self.audit_trail,
            strategy=strategy_cls(),
            persist_all_scores=self.config.persist_all_scores,
        )

    # ====================
    # Campaign CRUD
    # ====================

    async def create_nba(
        self,
        request: Union[NbaGeneralRequest, Dict[str, Any]],
        actor: Actor,
    ) -> Nba:
        """Create a Draft campaign at version 1"""
        request = parse_request(NbaGeneralRequest, request)

        nba = Nba(
            name=request.name,
            description=request.description,
            start_date=request.start_date,
            end_date=request.end_date,
            status=NbaStatus.DRAFT,
            owner_id=actor.actor_id,
            priority=request.priority,
            arbitration_weight=request.arbitration_weight,
            current_version=1,
        )

        async with self.repository.transaction():
            nba = await self.repository.insert_nba(nba)
            await self.version_manager.create_initial_version(nba, actor)
            await self.audit_trail.record(
                actor, AuditAction.CREATE_NBA, AuditEntityType.NBA, nba.nba_id, None, nba
            )

        await self._publish_event("nba.created", {
            "nba_id": nba.nba_id,
            "name": nba.name,
            "owner_id": nba.owner_id,
            "status": nba.status.value,
        })

        logger.info(f"NBA created: {nba.nba_id} ({nba.name})")
        return nba

    async def get_nba(self, nba_id: str) -> Nba:
        """Get campaign by ID, expiring it first if its window has ended"""
        return await self.lifecycle.reconcile(nba_id)

    async def list_nbas(self, statuses: Optional[List[NbaStatus]] = None) -> List[Nba]:
        await self.lifecycle.reconcile_all()
        return await self.repository.list_nbas(statuses)

    async def delete_nba(self, nba_id: str, actor: Actor) -> bool:
        """Delete a campaign with everything it owns, atomically with its audit entry"""
        async with self.repository.transaction():
            nba = await self._get_existing(nba_id)
            deleted = await self.repository.delete_nba(nba_id)
            await self.audit_trail.record(
                actor, AuditAction.DELETE_NBA, AuditEntityType.NBA, nba_id, nba, None
            )

        await self._publish_event("nba.deleted", {"nba_id": nba_id, "deleted_by": actor.actor_id})
        logger.info(f"NBA deleted: {nba_id}")
        return deleted

    async def clone_nba(self, nba_id: str, actor: Actor) -> Nba:
        """
        Copy a campaign into a new Draft at version 1.

        Audience, action and benefit come from the source's current version.
        Templates are copied with legal status reset to In Review and no
        legal approvals carried over.
        """
        self._require_role(actor, ActorRole.MARKETING, "clone campaigns")

        async with self.repository.transaction():
            source = await self._get_existing(nba_id)
            source_version = source.current_version

            clone = Nba(
                name=await self._clone_name(source.name),
                description=source.description,
                start_date=source.start_date,
                end_date=source.end_date,
                status=NbaStatus.DRAFT,
                owner_id=actor.actor_id,
                priority=source.priority,
                arbitration_weight=source.arbitration_weight,
                current_version=1,
            )
            clone = await self.repository.insert_nba(clone)

            audience = await self.repository.get_audience(nba_id, source_version)
            if audience:
                await self.repository.save_audience(clone.nba_id, 1, audience)
            action = await self.repository.get_action(nba_id, source_version)
            if action:
                await self.repository.save_action(clone.nba_id, 1, action)
            benefit = await self.repository.get_benefit(nba_id, source_version)
            if benefit:
                await self.repository.save_benefit(clone.nba_id, 1, benefit)

            for template in await self.repository.list_templates(nba_id, source_version):
                await self.repository.save_template(CommTemplate(
                    nba_id=clone.nba_id,
                    version=1,
                    channel=template.channel,
                    subject=template.subject,
                    body=template.body,
                    tokens=list(template.tokens),
                    legal_status=LegalStatus.IN_REVIEW,
                ))

            await self.version_manager.create_initial_version(
                clone, actor, change_summary=f"Cloned from {source.name} v{source_version}"
            )
            await self.audit_trail.record(
                actor,
                AuditAction.CLONE_NBA,
                AuditEntityType.NBA,
                clone.nba_id,
                None,
                {"source_nba_id": nba_id, "source_version": source_version, "nba": clone},
            )

        await self._publish_event("nba.created", {
            "nba_id": clone.nba_id,
            "name": clone.name,
            "owner_id": clone.owner_id,
            "status": clone.status.value,
            "cloned_from": nba_id,
        })

        logger.info(f"NBA {nba_id} cloned as {clone.nba_id} ({clone.name})")
        return clone

    # ====================
    # Versioned edits
    # ====================

    async def update_general(
        self,
        nba_id: str,
        request: Union[NbaGeneralRequest, Dict[str, Any]],
        actor: Actor,
    ) -> GeneralUpdateResult:
        """Update name, description, dates, priority and weight; never forks a version"""
        request = parse_request(NbaGeneralRequest, request)
        result: Dict[str, Nba] = {}

        async def mutate(nba: Nba, version: int) -> None:
            updated = nba.model_copy(update={**request.model_dump(), "updated_at": utc_now()})
            await self.repository.update_nba(updated)
            await self.audit_trail.record(
                actor, AuditAction.UPDATE_GENERAL, AuditEntityType.NBA, nba_id, nba, updated
            )
            result["nba"] = updated

        version = await self._apply_edit(nba_id, EditKind.GENERAL, mutate, actor)
        return GeneralUpdateResult(nba=result["nba"], version=version)

    async def save_audience(
        self,
        nba_id: str,
        request: Union[AudienceRequest, Dict[str, Any]],
        actor: Actor,
    ) -> AudienceSaveResult:
        """
        Save the audience rules and size them against every customer.

        Sizing scans the full customer set, O(customers) per save.
        """
        request = parse_request(AudienceRequest, request)
        if count_conditions(request.rules) == 0:
            raise NbaValidationError("Audience needs at least one inclusion condition", "rules")

        customers = await self.repository.list_customers()
        audience = AudienceConfig(rules=request.rules, exclusions=request.exclusions)
        size, sample = size_audience(customers, audience, self.config.audience_sample_size)
        audience = audience.model_copy(update={"size_estimate": size})

        async def mutate(nba: Nba, version: int) -> None:
            existing = await self.repository.get_audience(nba_id, version)
            await self.repository.save_audience(nba_id, version, audience)
            await self.audit_trail.record(
                actor,
                AuditAction.UPSERT_AUDIENCE,
                AuditEntityType.AUDIENCE,
                f"{nba_id}@v{version}",
                existing,
                audience,
            )

        version = await self._apply_edit(nba_id, EditKind.AUDIENCE, mutate, actor)
        logger.info(f"Audience saved for NBA {nba_id} v{version}: {size} customers")
        return AudienceSaveResult(version=version, size_estimate=size, sample_customer_ids=sample)

    async def save_action(
        self,
        nba_id: str,
        request: Union[ActionConfig, Dict[str, Any]],
        actor: Actor,
    ) -> int:
        action = parse_request(ActionConfig, request)

        async def mutate(nba: Nba, version: int) -> None:
            existing = await self.repository.get_action(nba_id, version)
            await self.repository.save_action(nba_id, version, action)
            await self.audit_trail.record(
                actor,
                AuditAction.UPSERT_ACTION,
                AuditEntityType.ACTION,
                f"{nba_id}@v{version}",
                existing,
                action,
            )

        return await self._apply_edit(nba_id, EditKind.ACTION, mutate, actor)

    async def save_benefit(
        self,
        nba_id: str,
        request: Union[BenefitConfig, Dict[str, Any]],
        actor: Actor,
    ) -> int:
        benefit = parse_request(BenefitConfig, request)

        async def mutate(nba: Nba, version: int) -> None:
            existing = await self.repository.get_benefit(nba_id, version)
            await self.repository.save_benefit(nba_id, version, benefit)
            await self.audit_trail.record(
                actor,
                AuditAction.UPSERT_BENEFIT,
                AuditEntityType.BENEFIT,
                f"{nba_id}@v{version}",
                existing,
                benefit,
            )

        return await self._apply_edit(nba_id, EditKind.BENEFIT, mutate, actor)

    async def save_comms(
        self,
        nba_id: str,
        request: Union[CommsRequest, Dict[str, Any]],
        actor: Actor,
    ) -> int:
        """
        Upsert one template per requested channel.

        Every written template goes to In Review regardless of its previous
        legal status. Channels without a matching template are skipped.
        """
        request = parse_request(CommsRequest, request)
        by_channel = {t.channel: t for t in request.templates}

        async def mutate(nba: Nba, version: int) -> None:
            for channel in dict.fromkeys(request.channels):
                source = by_channel.get(channel)
                if not source:
                    logger.debug(f"No template supplied for channel {channel.value}, skipping")
                    continue

                tokens = extract_tokens(f"{source.subject}\n{source.body}")
                existing = await self.repository.get_template_by_channel(nba_id, version, channel)
                if existing:
                    updated = existing.model_copy(update={
                        "subject": source.subject,
                        "body": source.body,
                        "tokens": tokens,
                        "legal_status": LegalStatus.IN_REVIEW,
                        "legal_reviewer_id": request.legal_reviewer_id or existing.legal_reviewer_id,
                        "legal_notes": (
                            request.legal_notes if request.legal_notes is not None
                            else existing.legal_notes
                        ),
                        "updated_at": utc_now(),
                    })
                    await self.repository.save_template(updated)
                    await self.audit_trail.record(
                        actor,
                        AuditAction.UPSERT_TEMPLATE,
                        AuditEntityType.COMM_TEMPLATE,
                        existing.template_id,
                        existing,
                        updated,
                    )
                else:
                    created = CommTemplate(
                        nba_id=nba_id,
                        version=version,
                        channel=channel,
                        subject=source.subject,
                        body=source.body,
                        tokens=tokens,
                        legal_status=LegalStatus.IN_REVIEW,
                        legal_reviewer_id=request.legal_reviewer_id,
                        legal_notes=request.legal_notes or "",
                    )
                    await self.repository.save_template(created)
                    await self.audit_trail.record(
                        actor,
                        AuditAction.CREATE_TEMPLATE,
                        AuditEntityType.COMM_TEMPLATE,
                        created.template_id,
                        None,
                        created,
                    )

        return await self._apply_edit(nba_id, EditKind.COMMS, mutate, actor)

    async def list_versions(self, nba_id: str) -> List[NbaVersion]:
        return await self.version_manager.list_versions(nba_id)

    async def diff_versions(self, nba_id: str, from_version: int, to_version: int) -> VersionDiff:
        return await self.version_manager.diff_versions(nba_id, from_version, to_version)

    # ====================
    # Legal review
    # ====================

    async def legal_inbox(self) -> List[LegalInboxItem]:
        """Templates awaiting review or rejected, newest first"""
        templates = await self.repository.list_templates_by_status(
            [LegalStatus.IN_REVIEW, LegalStatus.REJECTED]
        )
        items = []
        for template in templates:
            nba = await self.repository.get_nba(template.nba_id)
            if nba:
                items.append(LegalInboxItem(template=template, nba_name=nba.name))
        return items

    async def legal_decision(
        self,
        template_id: str,
        decision: Union[LegalStatus, str],
        comments: str,
        actor: Actor,
    ) -> CommTemplate:
        """Approve or reject a template and append a legal approval record"""
        self._require_role(actor, ActorRole.LEGAL, "decide on templates")

        try:
            decision = LegalStatus(decision)
        except ValueError:
            raise NbaValidationError(f"Unknown legal decision: {decision}", "decision")
        if decision not in (LegalStatus.APPROVED, LegalStatus.REJECTED):
            raise NbaValidationError("Decision must be Approved or Rejected", "decision")

        async with self.repository.transaction():
            template = await self.repository.get_template(template_id)
            if not template:
                raise NbaNotFoundError(f"Template not found: {template_id}")

            updated = template.model_copy(update={
                "legal_status": decision,
                "legal_reviewer_id": actor.actor_id,
                "legal_notes": comments,
                "updated_at": utc_now(),
            })
            await self.repository.save_template(updated)
            await self.repository.add_legal_approval(LegalApproval(
                entity_id=template_id,
                reviewer_id=actor.actor_id,
                status=decision,
                comments=comments,
            ))
            action = (
                AuditAction.LEGAL_APPROVED if decision == LegalStatus.APPROVED
                else AuditAction.LEGAL_REJECTED
            )
            await self.audit_trail.record(
                actor, action, AuditEntityType.LEGAL_APPROVAL, template_id, template, updated
            )

        logger.info(f"Template {template_id} {decision.value} by {actor.actor_id}")
        return updated

    # ====================
    # Lifecycle
    # ====================

    async def transition(
        self,
        nba_id: str,
        next_status: Union[NbaStatus, str],
        actor: Actor,
    ) -> Nba:
        before = await self.lifecycle.reconcile(nba_id)
        nba = await self.lifecycle.transition(nba_id, next_status, actor)

        await self._publish_event("nba.status_changed", {
            "nba_id": nba_id,
            "from_status": before.status.value,
            "to_status": nba.status.value,
            "changed_by": actor.actor_id,
        })
        return nba

    async def reconcile_expired(self, now: Optional[datetime] = None) -> List[Nba]:
        """Expire every campaign whose validity window has ended"""
        expired = await self.lifecycle.reconcile_all(now)
        if expired:
            logger.info(f"Expired {len(expired)} NBA(s)")
        return expired

    # ====================
    # Arbitration
    # ====================

    async def arbitrate(
        self,
        customer_id: str,
        score_all: bool = False,
        now: Optional[datetime] = None,
    ) -> ArbitrationDecision:
        """Winning campaign for a customer, or an explicit no-winner result"""
        customer = await self._get_customer(customer_id)
        decision = await self.arbitration.decide(customer, score_all=score_all, now=now)

        if decision.winner:
            await self._publish_event("arbitration.decided", {
                "customer_id": customer_id,
                "nba_id": decision.winner.nba_id,
                "version": decision.winner.version,
                "score": decision.winner.score,
                "reason_codes": decision.winner.reason_codes,
            })
        return decision

    async def customer_eligibility(
        self,
        customer_id: str,
        now: Optional[datetime] = None,
    ) -> EligibilityReport:
        customer = await self._get_customer(customer_id)
        return await self.arbitration.eligibility(customer, now=now)

    # ====================
    # Audit
    # ====================

    async def audit_history(
        self,
        entity_type: Union[AuditEntityType, str],
        entity_id: str,
    ) -> List[AuditEntry]:
        """Audit entries for one entity, newest first"""
        try:
            entity_type = AuditEntityType(entity_type)
        except ValueError:
            raise NbaValidationError(f"Unknown entity type: {entity_type}", "entity_type")
        return await self.audit_trail.history(entity_type, entity_id)

    # ====================
    # Helpers
    # ====================

    async def _get_existing(self, nba_id: str) -> Nba:
        nba = await self.repository.get_nba(nba_id)
        if not nba:
            raise NbaNotFoundError(f"NBA not found: {nba_id}")
        return nba

    def _require_role(self, actor: Actor, role: ActorRole, operation: str) -> None:
        if actor.role != role:
            logger.info(f"Actor {actor.actor_id} ({actor.role.value}) may not {operation}")
            raise NbaPermissionError(f"{role.value.capitalize()} role required to {operation}", role)

    async def _get_customer(self, customer_id: str) -> Customer:
        customer = await self.repository.get_customer(customer_id)
        if not customer:
            raise NbaNotFoundError(f"Customer not found: {customer_id}")
        return customer

    async def _apply_edit(
        self,
        nba_id: str,
        edit_kind: EditKind,
        mutate: Callable[[Nba, int], Awaitable[None]],
        actor: Actor,
    ) -> int:
        previous = (await self._get_existing(nba_id)).current_version
        version = await self.version_manager.apply_edit(nba_id, edit_kind, mutate, actor)

        if version != previous:
            await self._publish_event("nba.version_bumped", {
                "nba_id": nba_id,
                "from_version": previous,
                "to_version": version,
                "edit_kind": edit_kind.value,
                "changed_by": actor.actor_id,
            })
        return version

    async def _clone_name(self, name: str) -> str:
        base = f"Copy of {name}"
        candidate = base[:MAX_NAME_LENGTH]
        counter = 2
        while await self.repository.get_nba_by_name(candidate):
            suffix = f" ({counter})"
            candidate = base[:MAX_NAME_LENGTH - len(suffix)] + suffix
            counter += 1
        return candidate

    # ====================
    # Event Publishing
    # ====================

    async def _publish_event(self, event_type: str, data: Dict[str, Any]) -> None:
        """Publish event to event bus"""
        if not self.event_bus:
            logger.debug(f"Event bus not configured, skipping event: {event_type}")
            return

        try:
            event = {
                "event_type": event_type,
                "source": "nba_service",
                "timestamp": utc_now().isoformat(),
                "data": data,
            }
            await self.event_bus.publish_event(event)
            logger.debug(f"Published event: {event_type}")
        except Exception as e:
            logger.error(f"Failed to publish event {event_type}: {e}")


__all__ = ["NbaService", "extract_tokens", "parse_request"]
