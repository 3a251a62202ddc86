"""Anchor instruction discriminator computation and lookup."""

import hashlib
from typing import Dict, Optional

# Instruction names handled by the indexer, grouped by program area
INSTRUCTION_NAMES = [
    # Governance
    "create_round",
    "submit_idea",
    "transition_round",
    "cast_vote",
    "deposit_tokens",
    "withdraw_tokens",
    "relinquish_vote",
    "veto_idea",
    # Delegation / governance config
    "delegate_vote",
    "revoke_delegation",
    "update_governance_config",
    # Revenue
    "record_revenue_event",
    "claim_revenue_share",
    "execute_burn",
    "init_revenue_config",
    # Verification
    "submit_verification",
    "submit_peer_review",
    "finalize_peer_verification",
    "init_verification_config",
    # Contributions
    "record_contribution",
]

# Cache discriminators by instruction name
_DISCRIMINATOR_CACHE: Dict[str, bytes] = {}

# Reverse lookup: discriminator hex -> instruction name
_NAME_BY_HEX: Dict[str, str] = {}


def _compute_discriminator(name: str) -> bytes:
    """First 8 bytes of sha256("global:<name>")."""
    return hashlib.sha256(f"global:{name}".encode("utf-8")).digest()[:8]


def discriminator_of(name: str) -> bytes:
    """Get the 8-byte discriminator for an instruction name.

    Args:
        name: snake_case instruction name (e.g., "cast_vote")

    Returns:
        8-byte discriminator
    """
    if name not in _DISCRIMINATOR_CACHE:
        _DISCRIMINATOR_CACHE[name] = _compute_discriminator(name)
    return _DISCRIMINATOR_CACHE[name]


def _build_reverse_index() -> None:
    for name in INSTRUCTION_NAMES:
        _NAME_BY_HEX[discriminator_of(name).hex()] = name


def name_of(discriminator_hex: str) -> Optional[str]:
    """Look up the instruction name for a discriminator.

    Args:
        discriminator_hex: 16-character hex key of the first 8 data bytes

    Returns:
        Instruction name, or None if the discriminator is not registered
    """
    if not _NAME_BY_HEX:
        _build_reverse_index()
    return _NAME_BY_HEX.get(discriminator_hex.lower())
