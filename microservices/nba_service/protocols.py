"""
NBA Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from typing import Any, AsyncContextManager, List, Optional, Protocol

from .models import (
    ActorRole,
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


# ====================
# Repository Protocol
# ====================


class NbaRepositoryProtocol(Protocol):
    """Protocol for NBA data repository

    Implementations must provide atomic multi-row transactions, a unique
    constraint on campaign name and cascade delete from a campaign to its
    versions, sub-configs, templates and legal approvals.
    """

    async def initialize(self) -> None:
        """Initialize repository connection"""
        ...

    async def close(self) -> None:
        """Close repository connection"""
        ...

    async def health_check(self) -> bool:
        """Check repository health"""
        ...

    def transaction(self) -> AsyncContextManager[None]:
        """Atomic unit of work; nested calls join the outer transaction"""
        ...

    # Campaign CRUD
    async def insert_nba(self, nba: Nba) -> Nba:
        """Insert a campaign, enforcing the unique name"""
        ...

    async def update_nba(self, nba: Nba) -> Nba:
        """Replace a stored campaign, enforcing the unique name"""
        ...

    async def get_nba(self, nba_id: str) -> Optional[Nba]:
        """Get campaign by ID"""
        ...

    async def get_nba_by_name(self, name: str) -> Optional[Nba]:
        """Get campaign by its unique name"""
        ...

    async def list_nbas(self, statuses: Optional[List[NbaStatus]] = None) -> List[Nba]:
        """List campaigns, most recently updated first"""
        ...

    async def delete_nba(self, nba_id: str) -> bool:
        """Delete a campaign and everything it owns"""
        ...

    # Versions
    async def insert_version(self, version: NbaVersion) -> NbaVersion:
        """Insert a version row; (nba_id, version) is unique"""
        ...

    async def get_version(self, nba_id: str, version: int) -> Optional[NbaVersion]:
        ...

    async def list_versions(self, nba_id: str) -> List[NbaVersion]:
        """Versions in ascending order"""
        ...

    async def update_version_snapshot(
        self, nba_id: str, version: int, snapshot: NbaSnapshot
    ) -> None:
        ...

    # Versioned sub-configs
    async def get_audience(self, nba_id: str, version: int) -> Optional[AudienceConfig]:
        ...

    async def save_audience(self, nba_id: str, version: int, audience: AudienceConfig) -> None:
        ...

    async def insert_audience_if_absent(
        self, nba_id: str, version: int, audience: AudienceConfig
    ) -> bool:
        """Insert only when no row exists; returns True when inserted"""
        ...

    async def get_action(self, nba_id: str, version: int) -> Optional[ActionConfig]:
        ...

    async def save_action(self, nba_id: str, version: int, action: ActionConfig) -> None:
        ...

    async def insert_action_if_absent(
        self, nba_id: str, version: int, action: ActionConfig
    ) -> bool:
        ...

    async def get_benefit(self, nba_id: str, version: int) -> Optional[BenefitConfig]:
        ...

    async def save_benefit(self, nba_id: str, version: int, benefit: BenefitConfig) -> None:
        ...

    async def insert_benefit_if_absent(
        self, nba_id: str, version: int, benefit: BenefitConfig
    ) -> bool:
        ...

    # Communication templates
    async def list_templates(self, nba_id: str, version: int) -> List[CommTemplate]:
        """Templates of one version ordered by channel"""
        ...

    async def get_template(self, template_id: str) -> Optional[CommTemplate]:
        ...

    async def get_template_by_channel(
        self, nba_id: str, version: int, channel: Channel
    ) -> Optional[CommTemplate]:
        ...

    async def save_template(self, template: CommTemplate) -> CommTemplate:
        ...

    async def insert_template_if_absent(self, template: CommTemplate) -> bool:
        """Insert unless (nba_id, version, channel) already exists"""
        ...

    async def list_templates_by_status(
        self, statuses: List[LegalStatus]
    ) -> List[CommTemplate]:
        """Templates across all campaigns, most recently updated first"""
        ...

    # Legal approvals
    async def add_legal_approval(self, approval: LegalApproval) -> LegalApproval:
        ...

    async def list_legal_approvals(self, entity_id: Optional[str] = None) -> List[LegalApproval]:
        ...

    # Customers
    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        ...

    async def list_customers(self) -> List[Customer]:
        ...

    async def save_customer(self, customer: Customer) -> Customer:
        ...

    # Append-only logs
    async def add_score_record(self, record: ArbitrationScoreRecord) -> ArbitrationScoreRecord:
        ...

    async def list_score_records(
        self, customer_id: Optional[str] = None
    ) -> List[ArbitrationScoreRecord]:
        ...

    async def append_audit_entry(self, entry: AuditEntry) -> AuditEntry:
        """Append an entry, assigning its sequence number"""
        ...

    async def list_audit_entries(
        self,
        entity_type: Optional[AuditEntityType] = None,
        entity_id: Optional[str] = None,
    ) -> List[AuditEntry]:
        """Entries in insertion order"""
        ...


# ====================
# Event Bus Protocol
# ====================


class EventBusProtocol(Protocol):
    """Protocol for event bus operations"""

    async def publish_event(self, event: Any) -> bool:
        """Publish an event to the event bus"""
        ...


# ====================
# Custom Exceptions
# ====================


class NbaServiceError(Exception):
    """Base exception for NBA service errors"""
    pass


class NbaNotFoundError(NbaServiceError):
    """Raised when a campaign, version, template or customer is not found"""
    pass


class NbaValidationError(NbaServiceError):
    """Raised when input validation fails"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InvalidTransitionError(NbaServiceError):
    """Raised when a status transition is not in the allowed table"""

    def __init__(self, from_status: NbaStatus, to_status: NbaStatus):
        super().__init__(
            f"Invalid transition: {from_status.value} -> {to_status.value}"
        )
        self.from_status = from_status
        self.to_status = to_status


class LegalApprovalRequiredError(NbaServiceError):
    """Raised when activating a campaign whose templates are not all Approved"""

    def __init__(self, pending_template_ids: List[str]):
        super().__init__(
            f"Legal approval required for {len(pending_template_ids)} template(s)"
        )
        self.pending_template_ids = pending_template_ids


class NbaPermissionError(NbaServiceError):
    """Raised when the acting role may not perform an operation"""

    def __init__(self, message: str, required_role: Optional[ActorRole] = None):
        super().__init__(message)
        self.required_role = required_role


class UniqueConstraintViolationError(NbaServiceError):
    """Raised when a unique constraint (campaign name) is violated"""

    def __init__(self, message: str, field: str = "name"):
        super().__init__(message)
        self.field = field


__all__ = [
    "NbaRepositoryProtocol",
    "EventBusProtocol",
    "NbaServiceError",
    "NbaNotFoundError",
    "NbaValidationError",
    "InvalidTransitionError",
    "LegalApprovalRequiredError",
    "NbaPermissionError",
    "UniqueConstraintViolationError",
]
