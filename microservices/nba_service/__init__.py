"""
NBA Service

Next-best-action decision core providing:
- Recursive audience rule evaluation and audience sizing
- Versioned campaign configuration with forward-copy on material edits
- Lifecycle state machine with a legal-approval activation gate
- Deterministic per-customer arbitration and eligibility scoring
- Structured audit diffs for every mutation
"""

__version__ = "1.0.0"
__service__ = "nba_service"
