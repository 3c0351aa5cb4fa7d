"""
Achievement badges.

Only FirstStep lives on-chain today: claimable once the user has any
logged day, claimed through ``claimBadge(0)``.
"""

from __future__ import annotations

import logging
from typing import Sequence

from .errors import ConfirmationError, ValidationError
from .ledger.base import LedgerClient
from .models import Badge, BadgeStatus, CalendarDay
from .signer import Signer

logger = logging.getLogger("solartrack.badges")

BADGE_INFO = {
    Badge.FIRST_STEP: ("First Step", "Logged solar usage for the first time"),
}


def is_claimable(badge: Badge, claimed: bool, calendar: Sequence[CalendarDay]) -> bool:
    """Whether ``badge`` can be claimed given the user's activity."""
    if claimed:
        return False
    if badge is Badge.FIRST_STEP:
        return any(d.has_record for d in calendar)
    return False


async def load_badges(
    ledger: LedgerClient, user: str, calendar: Sequence[CalendarDay]
) -> list[BadgeStatus]:
    """Read claim state for every known badge.

    A badge whose state cannot be read is shown as unclaimed and not
    claimable.
    """
    statuses = []
    for badge, (name, description) in BADGE_INFO.items():
        try:
            claimed = await ledger.has_badge(user, int(badge))
        except Exception as exc:
            logger.warning("Failed to load badge %s: %s", badge.name, exc)
            statuses.append(BadgeStatus(badge=badge, name=name, description=description))
            continue
        statuses.append(
            BadgeStatus(
                badge=badge,
                name=name,
                description=description,
                claimed=claimed,
                claimable=is_claimable(badge, claimed, calendar),
            )
        )
    return statuses


async def claim_badge(ledger: LedgerClient, signer: Signer, status: BadgeStatus) -> BadgeStatus:
    """Claim a badge on-chain and wait for inclusion.

    Raises:
        ValidationError: The badge is not claimable.
        ConfirmationError: The claim transaction failed.
        LedgerCallError: The contract rejected the claim.
    """
    if not status.claimable:
        raise ValidationError(f"Badge {status.name} is not claimable")

    tx = await ledger.claim_badge(signer, int(status.badge))
    receipt = await tx.wait()
    if receipt is None or not receipt.succeeded:
        raise ConfirmationError(f"Badge claim failed: {tx.tx_hash}")

    logger.info("Claimed badge %s", status.badge.name)
    return status.model_copy(update={"claimed": True, "claimable": False})
