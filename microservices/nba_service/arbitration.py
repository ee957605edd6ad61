"""
Arbitration Engine

Picks the single winning campaign for a customer: filter live campaigns
to the ones whose current-version audience admits the customer, score the
survivors with a scoring strategy and rank them deterministically.

Two scoring strategies are provided. PriorityWeightedScoring drives
arbitration; AdditiveEligibilityScoring drives the per-customer
eligibility report.
"""

import hashlib
import logging
import math
from datetime import datetime
from typing import List, Optional, Tuple

from .audit_trail import AuditTrail
from .lifecycle import effective_status
from .models import (
    ActionConfig,
    ArbitrationCandidate,
    ArbitrationDecision,
    ArbitrationScoreRecord,
    ArbitrationWinner,
    Customer,
    EligibilityReport,
    EligibilityReportItem,
    EligibilityVerdict,
    Nba,
    NbaStatus,
    NoWinnerCause,
    ScoreBreakdown,
    as_utc,
    utc_now,
)
from .protocols import NbaRepositoryProtocol
from .rule_evaluator import NO_AUDIENCE_MATCH, check_eligibility

logger = logging.getLogger(__name__)

ACTIVATABLE_STATUSES = frozenset({NbaStatus.PUBLISHED, NbaStatus.SCHEDULED})

NO_WINNER_EXPLANATIONS = {
    NoWinnerCause.NO_ACTIVATABLE_CAMPAIGNS: "no activatable campaigns",
    NoWinnerCause.NO_AUDIENCE_MATCH: "no audience match",
}

# Scoring reason codes
PRIORITY_WEIGHTED = "PRIORITY_WEIGHTED"
ARBITRATION_WEIGHT = "ARBITRATION_WEIGHT"
PRIORITY = "PRIORITY"
URGENT_EXPIRY = "URGENT_EXPIRY"
EXPIRY_SOON = "EXPIRY_SOON"
CONSENT_AVAILABLE = "CONSENT_AVAILABLE"
FATIGUE_PENALTY = "FATIGUE_PENALTY"

JITTER_SCALE = 0.01


def tie_break_jitter(nba_id: str) -> float:
    """Deterministic value in [0, 0.01) derived from the campaign id"""
    digest = hashlib.md5(nba_id.encode()).hexdigest()
    return int(digest[:8], 16) / 0x100000000 * JITTER_SCALE


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


class PriorityWeightedScoring:
    """score = (11 - clamp(priority, 1, 10)) * 10 * weight + jitter"""

    name = "priority_weighted"

    def score(
        self,
        nba: Nba,
        customer: Customer,
        action: Optional[ActionConfig] = None,
        now: Optional[datetime] = None,
    ) -> ScoreBreakdown:
        priority_factor = (11 - _clamp(nba.priority, 1, 10)) * 10
        jitter = tie_break_jitter(nba.nba_id)
        return ScoreBreakdown(
            score=priority_factor * nba.arbitration_weight + jitter,
            reason_codes=[PRIORITY_WEIGHTED],
            factors={
                "priority_factor": float(priority_factor),
                "arbitration_weight": nba.arbitration_weight,
                "jitter": jitter,
            },
        )


class AdditiveEligibilityScoring:
    """Small additive score: weight, priority, card expiry urgency, consent, fatigue"""

    name = "additive"

    URGENT_EXPIRY_DAYS = 15
    EXPIRY_SOON_DAYS = 45
    URGENT_EXPIRY_BONUS = 0.2
    EXPIRY_SOON_BONUS = 0.1
    CONSENT_BONUS = 0.05
    PRIORITY_STEP = 0.05
    FATIGUE_PENALTY = 0.03

    def score(
        self,
        nba: Nba,
        customer: Customer,
        action: Optional[ActionConfig] = None,
        now: Optional[datetime] = None,
    ) -> ScoreBreakdown:
        now = as_utc(now or utc_now())
        factors = {}
        reasons = []

        factors["arbitration_weight"] = nba.arbitration_weight / 100
        reasons.append(ARBITRATION_WEIGHT)

        # Offer priority wins over campaign priority; lower number ranks higher
        priority = action.offer_priority if action else nba.priority
        factors["priority"] = (6 - _clamp(priority, 1, 5)) * self.PRIORITY_STEP
        reasons.append(PRIORITY)

        if customer.credit_card_exp_at:
            seconds = (customer.credit_card_exp_at - now).total_seconds()
            days = math.floor(seconds / 86400 + 0.5)
            if days <= self.URGENT_EXPIRY_DAYS:
                factors["expiry"] = self.URGENT_EXPIRY_BONUS
                reasons.append(URGENT_EXPIRY)
            elif days <= self.EXPIRY_SOON_DAYS:
                factors["expiry"] = self.EXPIRY_SOON_BONUS
                reasons.append(EXPIRY_SOON)

        if customer.consent_sms or customer.consent_email:
            factors["consent"] = self.CONSENT_BONUS
            reasons.append(CONSENT_AVAILABLE)

        factors["fatigue"] = -self.FATIGUE_PENALTY
        reasons.append(FATIGUE_PENALTY)

        return ScoreBreakdown(score=sum(factors.values()), reason_codes=reasons, factors=factors)


class ArbitrationEngine:
    """Filters, scores and ranks campaigns for one customer"""

    def __init__(
        self,
        repository: NbaRepositoryProtocol,
        audit_trail: AuditTrail,
        strategy: Optional[PriorityWeightedScoring] = None,
        eligibility_strategy: Optional[AdditiveEligibilityScoring] = None,
        persist_all_scores: bool = False,
    ):
        self.repository = repository
        self.audit_trail = audit_trail
        self.strategy = strategy or PriorityWeightedScoring()
        self.eligibility_strategy = eligibility_strategy or AdditiveEligibilityScoring()
        self.persist_all_scores = persist_all_scores

    async def _activatable(self, pool: Optional[List[Nba]], now: datetime) -> List[Nba]:
        campaigns = pool if pool is not None else await self.repository.list_nbas()
        return [n for n in campaigns if effective_status(n, now) in ACTIVATABLE_STATUSES]

    async def _verdict(self, nba: Nba, customer: Customer, now: datetime) -> EligibilityVerdict:
        audience = await self.repository.get_audience(nba.nba_id, nba.current_version)
        if audience is None:
            return EligibilityVerdict(eligible=False, reason_codes=[NO_AUDIENCE_MATCH])
        return check_eligibility(customer, audience, now)

    def _no_winner(self, customer: Customer, cause: NoWinnerCause, considered: int) -> ArbitrationDecision:
        logger.info(
            f"No winner for customer {customer.customer_id}: {NO_WINNER_EXPLANATIONS[cause]}"
        )
        return ArbitrationDecision(
            customer_id=customer.customer_id,
            eligible=False,
            cause=cause,
            explanation=NO_WINNER_EXPLANATIONS[cause],
            considered=considered,
        )

    async def decide(
        self,
        customer: Customer,
        pool: Optional[List[Nba]] = None,
        score_all: bool = False,
        now: Optional[datetime] = None,
    ) -> ArbitrationDecision:
        """
        Choose the winning campaign for a customer.

        Ranking is by score, then jitter, then campaign id, so identical
        inputs always produce the same winner. A score record is written
        for the winner, and for every candidate when `score_all` is set.
        """
        now = as_utc(now or utc_now())
        activatable = await self._activatable(pool, now)
        if not activatable:
            return self._no_winner(customer, NoWinnerCause.NO_ACTIVATABLE_CAMPAIGNS, 0)

        candidates: List[Tuple[ArbitrationCandidate, Nba]] = []
        for nba in activatable:
            verdict = await self._verdict(nba, customer, now)
            if not verdict.eligible:
                continue
            action = await self.repository.get_action(nba.nba_id, nba.current_version)
            breakdown = self.strategy.score(nba, customer, action, now)
            candidate = ArbitrationCandidate(
                nba_id=nba.nba_id,
                name=nba.name,
                status=nba.status,
                version=nba.current_version,
                score=breakdown.score,
                jitter=tie_break_jitter(nba.nba_id),
                reason_codes=verdict.reason_codes + breakdown.reason_codes,
                factors=breakdown.factors,
            )
            candidates.append((candidate, nba))

        if not candidates:
            return self._no_winner(customer, NoWinnerCause.NO_AUDIENCE_MATCH, len(activatable))

        candidates.sort(key=lambda c: (-c[0].score, -c[0].jitter, c[0].nba_id))
        top, top_nba = candidates[0]

        winner = ArbitrationWinner(
            **top.model_dump(),
            action=await self.repository.get_action(top_nba.nba_id, top_nba.current_version),
            benefit=await self.repository.get_benefit(top_nba.nba_id, top_nba.current_version),
        )

        recorded = candidates if (score_all or self.persist_all_scores) else candidates[:1]
        for candidate, _ in recorded:
            await self.audit_trail.record_score(ArbitrationScoreRecord(
                customer_id=customer.customer_id,
                nba_id=candidate.nba_id,
                nba_version=candidate.version,
                score=candidate.score,
                reason_codes=candidate.reason_codes,
                factors={**candidate.factors, "winner": candidate.nba_id == top.nba_id},
                strategy=self.strategy.name,
            ))

        logger.info(
            f"Arbitration for customer {customer.customer_id}: winner {top.nba_id} "
            f"score={top.score:.4f} ({len(candidates)}/{len(activatable)} eligible)"
        )
        return ArbitrationDecision(
            customer_id=customer.customer_id,
            eligible=True,
            winner=winner,
            considered=len(activatable),
            candidates=[c for c, _ in candidates] if score_all else [],
        )

    async def eligibility(
        self,
        customer: Customer,
        now: Optional[datetime] = None,
    ) -> EligibilityReport:
        """Every activatable campaign with its reasons; eligible ones get an additive score"""
        now = as_utc(now or utc_now())
        items: List[EligibilityReportItem] = []

        for nba in await self._activatable(None, now):
            verdict = await self._verdict(nba, customer, now)
            item = EligibilityReportItem(
                nba_id=nba.nba_id,
                name=nba.name,
                version=nba.current_version,
                eligible=verdict.eligible,
                reason_codes=list(verdict.reason_codes),
            )
            if verdict.eligible:
                action = await self.repository.get_action(nba.nba_id, nba.current_version)
                breakdown = self.eligibility_strategy.score(nba, customer, action, now)
                item.score = breakdown.score
                item.reason_codes.extend(breakdown.reason_codes)
            items.append(item)

        eligible = sorted(
            (i for i in items if i.eligible), key=lambda i: (-i.score, i.nba_id)
        )
        top = eligible[0] if eligible else None
        if top:
            await self.audit_trail.record_score(ArbitrationScoreRecord(
                customer_id=customer.customer_id,
                nba_id=top.nba_id,
                nba_version=top.version,
                score=top.score,
                reason_codes=top.reason_codes,
                strategy=self.eligibility_strategy.name,
            ))

        return EligibilityReport(customer_id=customer.customer_id, items=items, top=top)


__all__ = [
    "ACTIVATABLE_STATUSES",
    "tie_break_jitter",
    "PriorityWeightedScoring",
    "AdditiveEligibilityScoring",
    "ArbitrationEngine",
]
