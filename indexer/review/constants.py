"""Peer-review constants (scores are on a 0-10000 scale)."""

# Consensus
MIN_REVIEWERS = 3
CONSENSUS_THRESHOLD = 0.70
DISAGREEMENT_PENALTY = 1000
MAX_SCORE = 10000

# Reviewer tiers: 1 Explorer, 2 Builder, 3 Architect
TIER_NAMES = {1: "Explorer", 2: "Builder", 3: "Architect"}
TIER_WEIGHTS = {1: 1.0, 2: 2.0, 3: 3.0}
TIER_REWARD_RATES = {1: 0.15, 2: 0.20, 3: 0.25}

# Tier promotion thresholds: (total verified contributions, contributions in domain)
BUILDER_THRESHOLD = (10, 3)
ARCHITECT_THRESHOLD = (50, 10)

# Anti-collusion: a reviewer may not review the same author's last N submissions
MAX_CONSECUTIVE_REVIEWS = 3

# AI reports below this confidence require peer review
CONFIDENCE_THRESHOLD = 6000
