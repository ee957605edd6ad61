"""
NBA Service Data Repository

Data access layer - in-process store

Keeps every table in dictionaries and gives the service the guarantees a
relational store would: unique campaign names, (campaign, version) and
(campaign, version, channel) keys, cascade delete, copy-if-absent inserts
and all-or-nothing transactions.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple

from .models import (
    Nba,
    NbaStatus,
    NbaVersion,
    NbaSnapshot,
    AudienceConfig,
    ActionConfig,
    BenefitConfig,
    CommTemplate,
    LegalApproval,
    LegalStatus,
    Channel,
    Customer,
    ArbitrationScoreRecord,
    AuditEntry,
    AuditEntityType,
)
from .protocols import NbaNotFoundError, UniqueConstraintViolationError

logger = logging.getLogger(__name__)

# Repository that owns the transaction running in the current task, if any
_active_transaction: ContextVar[Optional["InMemoryNbaRepository"]] = ContextVar(
    "nba_active_transaction", default=None
)

VersionKey = Tuple[str, int]


class InMemoryNbaRepository:
    """NBA service data repository - in-process store"""

    def __init__(self, customers: Optional[Iterable[Customer]] = None):
        self._nbas: Dict[str, Nba] = {}
        self._versions: Dict[VersionKey, NbaVersion] = {}
        self._audiences: Dict[VersionKey, AudienceConfig] = {}
        self._actions: Dict[VersionKey, ActionConfig] = {}
        self._benefits: Dict[VersionKey, BenefitConfig] = {}
        self._templates: Dict[str, CommTemplate] = {}
        self._legal_approvals: List[LegalApproval] = []
        self._customers: Dict[str, Customer] = {}
        self._scores: List[ArbitrationScoreRecord] = []
        self._audit: List[AuditEntry] = []
        self._sequence = 0
        self._lock = asyncio.Lock()

        for customer in customers or []:
            self._customers[customer.customer_id] = customer.model_copy(deep=True)

    async def initialize(self) -> None:
        logger.info("NBA repository initialized (in-memory)")

    async def close(self) -> None:
        logger.info("NBA repository closed")

    async def health_check(self) -> bool:
        return True

    # ====================
    # Transactions
    # ====================

    def _capture(self) -> Dict[str, Any]:
        # Stored models are replaced, never mutated, so copying the
        # containers is enough to restore them.
        return {
            "_nbas": dict(self._nbas),
            "_versions": dict(self._versions),
            "_audiences": dict(self._audiences),
            "_actions": dict(self._actions),
            "_benefits": dict(self._benefits),
            "_templates": dict(self._templates),
            "_legal_approvals": list(self._legal_approvals),
            "_customers": dict(self._customers),
            "_scores": list(self._scores),
            "_audit": list(self._audit),
            "_sequence": self._sequence,
        }

    def _restore(self, state: Dict[str, Any]) -> None:
        for name, value in state.items():
            setattr(self, name, value)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Atomic unit of work; nested calls join the outer transaction"""
        if _active_transaction.get() is self:
            yield
            return

        async with self._lock:
            state = self._capture()
            token = _active_transaction.set(self)
            try:
                yield
            except BaseException as e:
                self._restore(state)
                logger.info(f"Transaction rolled back: {type(e).__name__}")
                raise
            finally:
                _active_transaction.reset(token)

    # ====================
    # Campaigns
    # ====================

    def _check_unique_name(self, nba: Nba) -> None:
        for other in self._nbas.values():
            if other.name == nba.name and other.nba_id != nba.nba_id:
                raise UniqueConstraintViolationError(
                    f"NBA name already exists: {nba.name}", "name"
                )

    def _require_nba(self, nba_id: str) -> None:
        if nba_id not in self._nbas:
            raise NbaNotFoundError(f"NBA not found: {nba_id}")

    async def insert_nba(self, nba: Nba) -> Nba:
        if nba.nba_id in self._nbas:
            raise UniqueConstraintViolationError(f"NBA already exists: {nba.nba_id}", "nba_id")
        self._check_unique_name(nba)
        self._nbas[nba.nba_id] = nba.model_copy(deep=True)
        return nba.model_copy(deep=True)

    async def update_nba(self, nba: Nba) -> Nba:
        self._require_nba(nba.nba_id)
        self._check_unique_name(nba)
        self._nbas[nba.nba_id] = nba.model_copy(deep=True)
        return nba.model_copy(deep=True)

    async def get_nba(self, nba_id: str) -> Optional[Nba]:
        nba = self._nbas.get(nba_id)
        return nba.model_copy(deep=True) if nba else None

    async def get_nba_by_name(self, name: str) -> Optional[Nba]:
        for nba in self._nbas.values():
            if nba.name == name:
                return nba.model_copy(deep=True)
        return None

    async def list_nbas(self, statuses: Optional[List[NbaStatus]] = None) -> List[Nba]:
        results = [n for n in self._nbas.values() if not statuses or n.status in statuses]
        results.sort(key=lambda n: n.updated_at, reverse=True)
        return [n.model_copy(deep=True) for n in results]

    async def delete_nba(self, nba_id: str) -> bool:
        if nba_id not in self._nbas:
            return False

        template_ids = {
            t.template_id for t in self._templates.values() if t.nba_id == nba_id
        }
        del self._nbas[nba_id]
        for table in (self._versions, self._audiences, self._actions, self._benefits):
            for key in [k for k in table if k[0] == nba_id]:
                del table[key]
        for template_id in template_ids:
            del self._templates[template_id]
        self._legal_approvals = [
            a for a in self._legal_approvals if a.entity_id not in template_ids
        ]
        return True

    # ====================
    # Versions
    # ====================

    async def insert_version(self, version: NbaVersion) -> NbaVersion:
        self._require_nba(version.nba_id)
        key = (version.nba_id, version.version)
        if key in self._versions:
            raise UniqueConstraintViolationError(
                f"Version {version.version} already exists for NBA {version.nba_id}", "version"
            )
        self._versions[key] = version.model_copy(deep=True)
        return version.model_copy(deep=True)

    async def get_version(self, nba_id: str, version: int) -> Optional[NbaVersion]:
        row = self._versions.get((nba_id, version))
        return row.model_copy(deep=True) if row else None

    async def list_versions(self, nba_id: str) -> List[NbaVersion]:
        rows = [v for (owner, _), v in self._versions.items() if owner == nba_id]
        rows.sort(key=lambda v: v.version)
        return [v.model_copy(deep=True) for v in rows]

    async def update_version_snapshot(
        self, nba_id: str, version: int, snapshot: NbaSnapshot
    ) -> None:
        row = self._versions.get((nba_id, version))
        if not row:
            raise NbaNotFoundError(f"Version {version} not found for NBA {nba_id}")
        self._versions[(nba_id, version)] = row.model_copy(
            update={"snapshot": snapshot.model_copy(deep=True)}
        )

    # ====================
    # Versioned sub-configs
    # ====================

    def _get_row(self, table: Dict[VersionKey, Any], nba_id: str, version: int) -> Any:
        row = table.get((nba_id, version))
        return row.model_copy(deep=True) if row else None

    def _save_row(self, table: Dict[VersionKey, Any], nba_id: str, version: int, row: Any) -> None:
        self._require_nba(nba_id)
        table[(nba_id, version)] = row.model_copy(deep=True)

    def _insert_row_if_absent(
        self, table: Dict[VersionKey, Any], nba_id: str, version: int, row: Any
    ) -> bool:
        if (nba_id, version) in table:
            return False
        self._save_row(table, nba_id, version, row)
        return True

    async def get_audience(self, nba_id: str, version: int) -> Optional[AudienceConfig]:
        return self._get_row(self._audiences, nba_id, version)

    async def save_audience(self, nba_id: str, version: int, audience: AudienceConfig) -> None:
        self._save_row(self._audiences, nba_id, version, audience)

    async def insert_audience_if_absent(
        self, nba_id: str, version: int, audience: AudienceConfig
    ) -> bool:
        return self._insert_row_if_absent(self._audiences, nba_id, version, audience)

    async def get_action(self, nba_id: str, version: int) -> Optional[ActionConfig]:
        return self._get_row(self._actions, nba_id, version)

    async def save_action(self, nba_id: str, version: int, action: ActionConfig) -> None:
        self._save_row(self._actions, nba_id, version, action)

    async def insert_action_if_absent(
        self, nba_id: str, version: int, action: ActionConfig
    ) -> bool:
        return self._insert_row_if_absent(self._actions, nba_id, version, action)

    async def get_benefit(self, nba_id: str, version: int) -> Optional[BenefitConfig]:
        return self._get_row(self._benefits, nba_id, version)

    async def save_benefit(self, nba_id: str, version: int, benefit: BenefitConfig) -> None:
        self._save_row(self._benefits, nba_id, version, benefit)

    async def insert_benefit_if_absent(
        self, nba_id: str, version: int, benefit: BenefitConfig
    ) -> bool:
        return self._insert_row_if_absent(self._benefits, nba_id, version, benefit)

    # ====================
    # Communication templates
    # ====================

    def _find_template(self, nba_id: str, version: int, channel: Channel) -> Optional[CommTemplate]:
        for template in self._templates.values():
            if (template.nba_id, template.version, template.channel) == (nba_id, version, channel):
                return template
        return None

    async def list_templates(self, nba_id: str, version: int) -> List[CommTemplate]:
        rows = [
            t for t in self._templates.values() if t.nba_id == nba_id and t.version == version
        ]
        rows.sort(key=lambda t: t.channel.value)
        return [t.model_copy(deep=True) for t in rows]

    async def get_template(self, template_id: str) -> Optional[CommTemplate]:
        template = self._templates.get(template_id)
        return template.model_copy(deep=True) if template else None

    async def get_template_by_channel(
        self, nba_id: str, version: int, channel: Channel
    ) -> Optional[CommTemplate]:
        template = self._find_template(nba_id, version, channel)
        return template.model_copy(deep=True) if template else None

    async def save_template(self, template: CommTemplate) -> CommTemplate:
        self._require_nba(template.nba_id)
        existing = self._find_template(template.nba_id, template.version, template.channel)
        if existing and existing.template_id != template.template_id:
            raise UniqueConstraintViolationError(
                f"Template for {template.channel.value} already exists on "
                f"NBA {template.nba_id} v{template.version}",
                "channel",
            )
        self._templates[template.template_id] = template.model_copy(deep=True)
        return template.model_copy(deep=True)

    async def insert_template_if_absent(self, template: CommTemplate) -> bool:
        if self._find_template(template.nba_id, template.version, template.channel):
            return False
        await self.save_template(template)
        return True

    async def list_templates_by_status(
        self, statuses: List[LegalStatus]
    ) -> List[CommTemplate]:
        rows = [t for t in self._templates.values() if t.legal_status in statuses]
        rows.sort(key=lambda t: t.updated_at, reverse=True)
        return [t.model_copy(deep=True) for t in rows]

    # ====================
    # Legal approvals
    # ====================

    async def add_legal_approval(self, approval: LegalApproval) -> LegalApproval:
        self._legal_approvals.append(approval.model_copy(deep=True))
        return approval.model_copy(deep=True)

    async def list_legal_approvals(self, entity_id: Optional[str] = None) -> List[LegalApproval]:
        return [
            a.model_copy(deep=True)
            for a in self._legal_approvals
            if entity_id is None or a.entity_id == entity_id
        ]

    # ====================
    # Customers
    # ====================

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        customer = self._customers.get(customer_id)
        return customer.model_copy(deep=True) if customer else None

    async def list_customers(self) -> List[Customer]:
        return [c.model_copy(deep=True) for c in self._customers.values()]

    async def save_customer(self, customer: Customer) -> Customer:
        self._customers[customer.customer_id] = customer.model_copy(deep=True)
        return customer.model_copy(deep=True)

    # ====================
    # Append-only logs
    # ====================

    async def add_score_record(self, record: ArbitrationScoreRecord) -> ArbitrationScoreRecord:
        self._scores.append(record.model_copy(deep=True))
        return record.model_copy(deep=True)

    async def list_score_records(
        self, customer_id: Optional[str] = None
    ) -> List[ArbitrationScoreRecord]:
        return [
            r.model_copy(deep=True)
            for r in self._scores
            if customer_id is None or r.customer_id == customer_id
        ]

    async def append_audit_entry(self, entry: AuditEntry) -> AuditEntry:
        self._sequence += 1
        stored = entry.model_copy(update={"sequence": self._sequence}, deep=True)
        self._audit.append(stored)
        return stored.model_copy(deep=True)

    async def list_audit_entries(
        self,
        entity_type: Optional[AuditEntityType] = None,
        entity_id: Optional[str] = None,
    ) -> List[AuditEntry]:
        return [
            e.model_copy(deep=True)
            for e in self._audit
            if (entity_type is None or e.entity_type == entity_type)
            and (entity_id is None or e.entity_id == entity_id)
        ]


__all__ = ["InMemoryNbaRepository"]
