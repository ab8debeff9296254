"""
FundraiseUp -> Raiser's Edge field mapping.

Pure functions: nothing here performs I/O.
"""

from datetime import timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from .errors import InvalidAmountError, ValidationError
from .models import (
    GIFT_SUBTYPE_RECURRING,
    GIFT_TYPE_DONATION,
    GIFT_TYPE_RECURRING_GIFT,
    GIFT_TYPE_RECURRING_GIFT_PAYMENT,
    Address,
    Constituent,
    Donation,
    Email,
    Gift,
    GiftOrigin,
    GiftSplit,
    Phone,
    RecurringContext,
    Supporter,
    SupporterAddress,
)

PAYMENT_METHODS = {
    "credit_card": "Credit card",
    "apple_pay": "Credit card",
    "google_pay": "Credit card",
    "bacs_direct_debit": "Direct debit",
    "ach": "Direct debit",
    "sepa_direct_debit": "Direct debit",
    "paypal": "PayPal",
}


def payment_method_name(method: str) -> str:
    """Raiser's Edge payment method for a FundraiseUp payment method tag."""
    return PAYMENT_METHODS.get(method, "Other")


def parse_amount(raw: str) -> Decimal:
    """
    Parse a decimal amount string.

    Raises:
        InvalidAmountError: For empty, malformed or non-finite amounts
    """
    try:
        amount = Decimal(raw.strip())
    except (InvalidOperation, AttributeError) as exc:
        raise InvalidAmountError(f"invalid amount {raw!r}") from exc
    if not amount.is_finite():
        raise InvalidAmountError(f"invalid amount {raw!r}")
    return amount


def map_address(address: Optional[SupporterAddress]) -> Optional[Address]:
    if address is None:
        return None
    lines = address.line1
    if address.line2:
        lines = f"{address.line1}\n{address.line2}"
    return Address(
        address_lines=lines,
        city=address.city,
        state=address.region,
        post_code=address.postal_code,
        country=address.country,
    )


def map_constituent(supporter: Supporter) -> Constituent:
    """Build a new individual constituent from a supporter's details."""
    return Constituent(
        first_name=supporter.first_name,
        last_name=supporter.last_name,
        email=Email(address=supporter.email) if supporter.email else None,
        phone=Phone(number=supporter.phone) if supporter.phone else None,
        address=map_address(supporter.address),
    )


class GiftMapper:
    """
    Converts a donation and its recurring context into a gift.

    Fund, campaign, appeal, batch prefix and source name come from
    configuration and are the same for every gift.
    """

    def __init__(
        self,
        fund_id: str,
        campaign_id: str = "",
        appeal_id: str = "",
        gift_type: str = GIFT_TYPE_DONATION,
        batch_prefix: str = "FundraiseUp",
        source_name: str = "FundraiseUp",
    ):
        self.fund_id = fund_id
        self.campaign_id = campaign_id
        self.appeal_id = appeal_id
        self.gift_type = gift_type
        self.batch_prefix = batch_prefix
        self.source_name = source_name

    @classmethod
    def from_settings(cls, config) -> "GiftMapper":
        return cls(
            fund_id=config.gift_fund_id,
            campaign_id=config.gift_campaign_id,
            appeal_id=config.gift_appeal_id,
            gift_type=config.gift_type,
            batch_prefix=config.gift_batch_prefix,
            source_name=config.gift_source_name,
        )

    def map(self, donation: Donation, context: RecurringContext) -> Gift:
        """
        Build the gift for a donation. The constituent id is left empty.

        Raises:
            InvalidAmountError: When the amount is not a decimal
            ValidationError: When the donation has no creation time
        """
        amount = parse_amount(donation.amount)
        if donation.created_at is None:
            raise ValidationError(f"donation {donation.id} has no created_at")

        gift = Gift(
            amount=amount,
            date=donation.created_at.astimezone(timezone.utc).strftime("%Y-%m-%d"),
            external_id=donation.id,
            gift_splits=[GiftSplit(
                amount=amount,
                fund_id=self.fund_id,
                campaign_id=self.campaign_id,
                appeal_id=self.appeal_id,
            )],
            batch_prefix=self.batch_prefix,
            is_manual=True,
            reference=donation.comment,
        )
        if donation.payment_method:
            gift.payment_method = payment_method_name(donation.payment_method)

        if not donation.is_recurring:
            gift.type = self.gift_type
            gift.lookup_id = donation.id
            return gift

        gift.lookup_id = donation.recurring_id
        gift.subtype = GIFT_SUBTYPE_RECURRING
        gift.origin = GiftOrigin(donation_id=donation.id, name=self.source_name).to_json()
        if context.is_first:
            gift.type = GIFT_TYPE_RECURRING_GIFT
        else:
            gift.type = GIFT_TYPE_RECURRING_GIFT_PAYMENT
            # Empty when the series self-healed without an anchor.
            if context.anchor_gift_id:
                gift.linked_gifts = [context.anchor_gift_id]
        return gift
