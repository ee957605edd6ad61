"""
NBA Service Data Models

Pydantic models for campaigns (NBAs), their versioned sub-configs,
audience rule trees, customers, arbitration results and audit entries.

These are the canonical data structures for the decision core. Every
boundary input is validated here; the core never carries opaque JSON.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ====================
# Enums
# ====================

class NbaStatus(str, Enum):
    """Campaign lifecycle status"""
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    IN_LEGAL_REVIEW = "In Legal Review"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    IN_TESTING = "In Testing"
    SCHEDULED = "Scheduled"
    PUBLISHING = "Publishing"
    PUBLISHED = "Published"
    TERMINATED = "Terminated"
    EXPIRED = "Expired"
    COMPLETED = "Completed"
    ARCHIVED = "Archived"
    CANCELLED = "Cancelled"


class LegalStatus(str, Enum):
    """Legal review status of a communication template"""
    DRAFT = "Draft"
    IN_REVIEW = "In Review"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class EditKind(str, Enum):
    """Which part of a campaign an edit targets"""
    GENERAL = "general"
    AUDIENCE = "audience"
    ACTION = "action"
    BENEFIT = "benefit"
    COMMS = "comms"


class ActorRole(str, Enum):
    MARKETING = "marketing"
    LEGAL = "legal"
    ANALYST = "analyst"
    SYSTEM = "system"


class Channel(str, Enum):
    SMS = "SMS"
    EMAIL = "Email"
    MEMO = "Memo"


class SaleChannel(str, Enum):
    STORE = "Store"
    CARE = "Care"
    SELF_SERVICE = "SelfService"
    WEB = "Web"
    RETAIL = "Retail"


class ActionType(str, Enum):
    PURCHASE_SKU = "purchase_sku"
    CHANGE_PLAN = "change_plan"
    ENROLL_ABP = "enroll_abp"
    UPDATE_PAYMENT_PROFILE = "update_payment_profile"
    REFERRAL = "referral"
    USAGE_MILESTONE = "usage_milestone"
    COMPLETE_PROFILE = "complete_profile"


class BenefitType(str, Enum):
    ORDER_DISCOUNT = "order_discount"
    ONE_TIME_CREDIT = "one_time_credit"
    RECURRING_CREDIT = "recurring_credit"
    FREE_ADD_ON = "free_add_on"


class ValueUnit(str, Enum):
    PERCENT = "percent"
    USD = "usd"
    POINTS = "points"
    ADD_ON = "add_on"


class RedemptionLogic(str, Enum):
    AUTO_APPLY = "auto_apply"
    PROMO_CODE = "promo_code"
    REP_ASSISTED = "rep_assisted"


class RuleField(str, Enum):
    """Customer attributes a rule condition may reference"""
    PLAN = "plan"
    TENURE_MONTHS = "tenure_months"
    PURCHASES_12MO = "purchases_12mo"
    COMPLAINTS_12MO = "complaints_12mo"
    RISK_FLAG = "risk_flag"
    CONSENT_SMS = "consent_sms"
    CONSENT_EMAIL = "consent_email"
    ABP_ENROLLED = "abp_enrolled"
    CREDIT_CARD_EXP_AT = "credit_card_exp_at"
    RISK_FLAGS = "risk_flags"


class RuleOperator(str, Enum):
    EQ = "="
    NE = "!="
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    IN = "in"
    WITHIN_DAYS = "withinDays"
    CONTAINS = "contains"


class GroupOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class AuditEntityType(str, Enum):
    NBA = "NBA"
    AUDIENCE = "Audience"
    ACTION = "Action"
    BENEFIT = "Benefit"
    COMM_TEMPLATE = "CommTemplate"
    LEGAL_APPROVAL = "LegalApproval"


class AuditAction(str, Enum):
    """Verbs recorded on audit entries"""
    CREATE_NBA = "CREATE_NBA"
    CLONE_NBA = "CLONE_NBA"
    DELETE_NBA = "DELETE_NBA"
    UPDATE_GENERAL = "UPDATE_GENERAL"
    VERSION_BUMP = "VERSION_BUMP"
    UPSERT_AUDIENCE = "UPSERT_AUDIENCE"
    UPSERT_ACTION = "UPSERT_ACTION"
    UPSERT_BENEFIT = "UPSERT_BENEFIT"
    CREATE_TEMPLATE = "CREATE_TEMPLATE"
    UPSERT_TEMPLATE = "UPSERT_TEMPLATE"
    LEGAL_APPROVED = "LEGAL_APPROVED"
    LEGAL_REJECTED = "LEGAL_REJECTED"
    STATUS_TRANSITION = "STATUS_TRANSITION"
    STATUS_EXPIRED = "STATUS_EXPIRED"


class NoWinnerCause(str, Enum):
    """Why an arbitration produced no winner"""
    NO_ACTIVATABLE_CAMPAIGNS = "NO_ACTIVATABLE_CAMPAIGNS"
    NO_AUDIENCE_MATCH = "NO_AUDIENCE_MATCH"


# ====================
# Base
# ====================

class BaseContract(BaseModel):
    """Base model for all contracts"""

    model_config = {
        "from_attributes": True,
    }


class Actor(BaseContract):
    """Whoever performs a mutation; recorded on every audit entry"""
    actor_id: str = Field(..., min_length=1)
    role: ActorRole = ActorRole.MARKETING


# ====================
# Audience rules
# ====================

RuleScalar = Union[StrictBool, StrictInt, StrictFloat, StrictStr]


def _tag_rule(item: Any) -> Any:
    # Accept untagged JSON trees: a node with child rules is a group.
    if isinstance(item, dict) and "kind" not in item:
        return {**item, "kind": "group" if "rules" in item else "condition"}
    return item


class Condition(BaseContract):
    """Single field comparison"""
    kind: Literal["condition"] = "condition"
    field: RuleField
    op: RuleOperator
    value: Union[RuleScalar, List[RuleScalar]]


class RuleGroup(BaseContract):
    """AND/OR over child rules"""
    kind: Literal["group"] = "group"
    op: GroupOperator = GroupOperator.AND
    rules: List["RuleExpression"] = Field(default_factory=list)

    @field_validator("rules", mode="before")
    @classmethod
    def tag_children(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [_tag_rule(item) for item in value]
        return value


RuleExpression = Annotated[Union[Condition, RuleGroup], Field(discriminator="kind")]

RuleGroup.model_rebuild()


class Customer(BaseContract):
    """Flat customer record rules are evaluated against"""
    customer_id: str
    first_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    plan: Optional[str] = None
    tenure_months: Optional[int] = Field(None, ge=0)
    purchases_12mo: Optional[int] = Field(None, ge=0)
    complaints_12mo: Optional[int] = Field(None, ge=0)
    risk_flag: bool = False
    consent_sms: bool = False
    consent_email: bool = False
    abp_enrolled: bool = False
    credit_card_exp_at: Optional[datetime] = None
    risk_flags: List[str] = Field(default_factory=list)

    @field_validator("credit_card_exp_at")
    @classmethod
    def normalize_expiry(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


# ====================
# Versioned sub-configs
# ====================

class AudienceConfig(BaseContract):
    """Inclusion tree, exclusion list and cached size estimate"""
    rules: RuleGroup = Field(default_factory=RuleGroup)
    exclusions: List[Condition] = Field(default_factory=list)
    size_estimate: int = Field(default=0, ge=0)


class ActionConfig(BaseContract):
    action_type: ActionType = ActionType.PURCHASE_SKU
    completion_event: str = Field(..., min_length=2)
    sale_channels: List[SaleChannel] = Field(..., min_length=1)
    offer_priority: int = Field(default=5, ge=1, le=10)
    max_offers_per_customer: int = Field(default=1, ge=1, le=10)

    @field_validator("completion_event", mode="before")
    @classmethod
    def strip_event(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class BenefitThreshold(BaseContract):
    min_tenure_months: Optional[int] = Field(None, ge=0)
    min_purchases_12mo: Optional[int] = Field(None, ge=0)


class Stackability(BaseContract):
    allowed: bool = False
    exclusivity_tags: List[str] = Field(default_factory=list)


class BenefitConfig(BaseContract):
    benefit_type: BenefitType
    value_number: float = Field(..., gt=0)
    value_unit: ValueUnit = ValueUnit.USD
    cap_number: float = Field(..., gt=0)
    threshold: BenefitThreshold = Field(default_factory=BenefitThreshold)
    stackability: Stackability = Field(default_factory=Stackability)
    excluded_offer_ids: List[str] = Field(default_factory=list)
    redemption_logic: RedemptionLogic = RedemptionLogic.AUTO_APPLY
    description: str = Field(..., min_length=3, max_length=240)


class CommTemplate(BaseContract):
    """Message template for one (campaign, version, channel)"""
    template_id: str = Field(default_factory=lambda: f"tpl_{uuid4().hex[:16]}")
    nba_id: str
    version: int = Field(..., ge=1)
    channel: Channel
    subject: str = ""
    body: str
    tokens: List[str] = Field(default_factory=list)
    legal_status: LegalStatus = LegalStatus.IN_REVIEW
    legal_reviewer_id: Optional[str] = None
    legal_notes: str = ""
    updated_at: datetime = Field(default_factory=utc_now)


class LegalApproval(BaseContract):
    """Append-only record of a legal decision"""
    approval_id: str = Field(default_factory=lambda: f"lga_{uuid4().hex[:16]}")
    entity_type: AuditEntityType = AuditEntityType.COMM_TEMPLATE
    entity_id: str
    reviewer_id: str
    status: LegalStatus
    comments: str = ""
    created_at: datetime = Field(default_factory=utc_now)


# ====================
# Campaign and versions
# ====================

class Nba(BaseContract):
    """Core campaign model"""
    nba_id: str = Field(default_factory=lambda: f"nba_{uuid4().hex[:16]}")
    name: str = Field(..., min_length=3, max_length=120)
    description: str = ""
    start_date: datetime
    end_date: datetime
    status: NbaStatus = NbaStatus.DRAFT
    owner_id: str
    priority: int = Field(default=5, ge=1, le=10)
    arbitration_weight: float = Field(default=1.0, gt=0)
    current_version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, value: datetime) -> datetime:
        return as_utc(value)


class NbaSnapshot(BaseContract):
    """Everything one version of a campaign consists of"""
    version: int
    general: Dict[str, Any] = Field(default_factory=dict)
    audience: Optional[AudienceConfig] = None
    action: Optional[ActionConfig] = None
    benefit: Optional[BenefitConfig] = None
    comms: List[CommTemplate] = Field(default_factory=list)


class NbaVersion(BaseContract):
    nba_id: str
    version: int = Field(..., ge=1)
    snapshot: NbaSnapshot
    material_change: bool = False
    change_summary: str = ""
    created_by: str
    created_at: datetime = Field(default_factory=utc_now)


# ====================
# Audit and scoring logs
# ====================

class FieldChange(BaseContract):
    """One leaf-level difference between two documents"""
    path: str
    kind: Literal["added", "removed", "changed"]
    before: Any = None
    after: Any = None


class AuditEntry(BaseContract):
    entry_id: str = Field(default_factory=lambda: f"aud_{uuid4().hex[:16]}")
    sequence: int = 0
    actor_id: str
    actor_role: ActorRole
    action: AuditAction
    entity_type: AuditEntityType
    entity_id: str
    before: Any = None
    after: Any = None
    changes: List[FieldChange] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)


class ArbitrationScoreRecord(BaseContract):
    score_id: str = Field(default_factory=lambda: f"scr_{uuid4().hex[:16]}")
    customer_id: str
    nba_id: str
    nba_version: int
    score: float
    reason_codes: List[str] = Field(default_factory=list)
    factors: Dict[str, Any] = Field(default_factory=dict)
    strategy: str
    created_at: datetime = Field(default_factory=utc_now)


# ====================
# Requests
# ====================

class NbaGeneralRequest(BaseContract):
    """General details for create and update"""
    name: str = Field(..., min_length=3, max_length=120)
    description: str = Field(default="", max_length=1000)
    start_date: datetime
    end_date: datetime
    priority: int = Field(default=5, ge=1, le=10)
    arbitration_weight: float = Field(default=1.0, ge=0.1, le=10)

    @field_validator("name", "description", mode="before")
    @classmethod
    def strip_text(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("start_date")
    @classmethod
    def normalize_start(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("end_date")
    @classmethod
    def end_after_start(cls, value: datetime, info) -> datetime:
        value = as_utc(value)
        start = info.data.get("start_date")
        if start is not None and start >= value:
            raise ValueError("Start Date must be before End Date")
        return value


class AudienceRequest(BaseContract):
    rules: RuleGroup
    exclusions: List[Condition] = Field(default_factory=list)


class TemplateInput(BaseContract):
    channel: Channel
    subject: str = Field(default="", max_length=140)
    body: str = Field(..., min_length=3, max_length=4000)

    @field_validator("subject", "body", mode="before")
    @classmethod
    def strip_text(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class CommsRequest(BaseContract):
    channels: List[Channel] = Field(..., min_length=1)
    templates: List[TemplateInput] = Field(..., min_length=1)
    legal_reviewer_id: Optional[str] = None
    legal_notes: Optional[str] = Field(None, max_length=2000)


# ====================
# Results
# ====================

class GeneralUpdateResult(BaseContract):
    nba: Nba
    version: int


class AudienceSaveResult(BaseContract):
    version: int
    size_estimate: int
    sample_customer_ids: List[str] = Field(default_factory=list)


class LegalInboxItem(BaseContract):
    template: CommTemplate
    nba_name: str


class VersionDiff(BaseContract):
    nba_id: str
    from_version: int
    to_version: int
    changes: List[FieldChange] = Field(default_factory=list)


class EligibilityVerdict(BaseContract):
    eligible: bool
    reason_codes: List[str] = Field(default_factory=list)


class ScoreBreakdown(BaseContract):
    """Score produced by a scoring strategy for one candidate"""
    score: float
    reason_codes: List[str] = Field(default_factory=list)
    factors: Dict[str, float] = Field(default_factory=dict)


class ArbitrationCandidate(BaseContract):
    nba_id: str
    name: str
    status: NbaStatus
    version: int
    score: float
    jitter: float = 0.0
    reason_codes: List[str] = Field(default_factory=list)
    factors: Dict[str, float] = Field(default_factory=dict)


class ArbitrationWinner(ArbitrationCandidate):
    action: Optional[ActionConfig] = None
    benefit: Optional[BenefitConfig] = None


class ArbitrationDecision(BaseContract):
    customer_id: str
    eligible: bool
    winner: Optional[ArbitrationWinner] = None
    cause: Optional[NoWinnerCause] = None
    explanation: str = ""
    considered: int = 0
    candidates: List[ArbitrationCandidate] = Field(default_factory=list)


class EligibilityReportItem(BaseContract):
    nba_id: str
    name: str
    version: int
    eligible: bool
    reason_codes: List[str] = Field(default_factory=list)
    score: Optional[float] = None


class EligibilityReport(BaseContract):
    customer_id: str
    items: List[EligibilityReportItem] = Field(default_factory=list)
    top: Optional[EligibilityReportItem] = None


__all__ = [
    "utc_now",
    "as_utc",
    "NbaStatus",
    "LegalStatus",
    "EditKind",
    "ActorRole",
    "Channel",
    "SaleChannel",
    "ActionType",
    "BenefitType",
    "ValueUnit",
    "RedemptionLogic",
    "RuleField",
    "RuleOperator",
    "GroupOperator",
    "AuditEntityType",
    "AuditAction",
    "NoWinnerCause",
    "BaseContract",
    "Actor",
    "Condition",
    "RuleGroup",
    "RuleExpression",
    "Customer",
    "AudienceConfig",
    "ActionConfig",
    "BenefitThreshold",
    "Stackability",
    "BenefitConfig",
    "CommTemplate",
    "LegalApproval",
    "Nba",
    "NbaSnapshot",
    "NbaVersion",
    "FieldChange",
    "AuditEntry",
    "ArbitrationScoreRecord",
    "NbaGeneralRequest",
    "AudienceRequest",
    "TemplateInput",
    "CommsRequest",
    "GeneralUpdateResult",
    "AudienceSaveResult",
    "LegalInboxItem",
    "VersionDiff",
    "EligibilityVerdict",
    "ScoreBreakdown",
    "ArbitrationCandidate",
    "ArbitrationWinner",
    "ArbitrationDecision",
    "EligibilityReportItem",
    "EligibilityReport",
]
