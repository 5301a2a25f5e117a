"""
Platform fee arithmetic.

The platform keeps a break-even fee from each damage charge so that the
gateway's processing fee is not absorbed by the platform. The fee is only
taken when the charge is routed to a manager's connected account.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from damage_claims.config.settings import GatewaySettings

logger = logging.getLogger(__name__)


def break_even_fee(amount_cents: int, fee_percent: float, fee_fixed_cents: int) -> int:
    """
    Fee covering the gateway's percentage-plus-fixed processing charge.

    Rounds half up, so 4000 cents at 2.9% + 30 gives 146.
    """
    if amount_cents <= 0:
        return 0
    fee = Decimal(amount_cents) * Decimal(str(fee_percent)) + Decimal(fee_fixed_cents)
    return int(fee.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def application_fee(
    amount_cents: int,
    destination_account: Optional[str],
    gateway: GatewaySettings,
) -> int:
    """Platform fee for a charge; zero when there is no destination account."""
    if not destination_account:
        return 0
    fee = break_even_fee(amount_cents, gateway.fee_percent, gateway.fee_fixed_cents)
    logger.info(
        f"Break-even fee for {amount_cents} cents: {fee} cents "
        f"({gateway.fee_percent * 100:.1f}% + {gateway.fee_fixed_cents})"
    )
    return fee
