#!/usr/bin/env python3
"""NBA decision service configuration

Tunables for audience sizing, expiry reconciliation and arbitration.
"""
import os
from dataclasses import dataclass

def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


@dataclass
class NbaServiceConfig:
    """Decision core settings"""

    # ===========================================
    # Audience sizing
    # ===========================================
    # Customer ids returned with an audience save
    audience_sample_size: int = 20

    # ===========================================
    # Lifecycle
    # ===========================================
    # Actor recorded on audit entries written by expiry reconciliation
    system_actor_id: str = "SYSTEM"

    # ===========================================
    # Arbitration
    # ===========================================
    # "priority_weighted" or "additive"
    default_scoring_strategy: str = "priority_weighted"
    # Persist a score record for every candidate, not just the winner
    persist_all_scores: bool = False

    @classmethod
    def from_env(cls) -> 'NbaServiceConfig':
        """Load NBA service configuration from environment variables"""
        return cls(
            audience_sample_size=_int(os.getenv("NBA_AUDIENCE_SAMPLE_SIZE", "20"), 20),
            system_actor_id=os.getenv("NBA_SYSTEM_ACTOR_ID", "SYSTEM"),
            default_scoring_strategy=os.getenv("NBA_SCORING_STRATEGY", "priority_weighted"),
            persist_all_scores=_bool(os.getenv("NBA_PERSIST_ALL_SCORES", "false")),
        )
