"""
Tests for FundraiseUp -> Raiser's Edge mapping.
"""

import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from services.giftbridge.errors import InvalidAmountError, ValidationError
from services.giftbridge.mapper import (
    GiftMapper,
    map_constituent,
    parse_amount,
    payment_method_name,
)
from services.giftbridge.models import (
    GIFT_TYPE_DONATION,
    GIFT_TYPE_RECURRING_GIFT,
    GIFT_TYPE_RECURRING_GIFT_PAYMENT,
    Donation,
    RecurringContext,
    Supporter,
    SupporterAddress,
)


class TestPaymentMethod:
    """Test payment method names."""

    @pytest.mark.parametrize("method,expected", [
        ("credit_card", "Credit card"),
        ("apple_pay", "Credit card"),
        ("google_pay", "Credit card"),
        ("bacs_direct_debit", "Direct debit"),
        ("ach", "Direct debit"),
        ("sepa_direct_debit", "Direct debit"),
        ("paypal", "PayPal"),
        ("crypto", "Other"),
        ("", "Other"),
    ])
    def test_mapping(self, method, expected):
        assert payment_method_name(method) == expected


class TestParseAmount:
    """Test decimal amount parsing."""

    def test_valid(self):
        assert parse_amount("50.00") == Decimal("50.00")
        assert parse_amount(" 12.5 ") == Decimal("12.5")

    @pytest.mark.parametrize("raw", ["", "abc", "1,000.00", "NaN", "Infinity"])
    def test_invalid(self, raw):
        with pytest.raises(InvalidAmountError):
            parse_amount(raw)


class TestMapConstituent:
    """Test supporter to constituent mapping."""

    def test_full_supporter(self):
        supporter = Supporter(
            id="s1",
            first_name="Ada",
            last_name="Lovelace",
            email="ada@example.com",
            phone="+44 20 7946 0000",
            address=SupporterAddress(
                line1="12 St James's Square",
                line2="Flat 3",
                city="London",
                region="Greater London",
                postal_code="SW1Y 4JH",
                country="GB",
            ),
        )

        payload = map_constituent(supporter).to_payload()

        assert payload["first"] == "Ada"
        assert payload["last"] == "Lovelace"
        assert payload["type"] == "Individual"
        assert payload["email"] == {"address": "ada@example.com", "type": "Email", "primary": True}
        assert payload["phone"] == {"number": "+44 20 7946 0000", "type": "Mobile", "primary": True}
        assert payload["address"]["address_lines"] == "12 St James's Square\nFlat 3"
        assert payload["address"]["state"] == "Greater London"
        assert payload["address"]["post_code"] == "SW1Y 4JH"
        assert payload["address"]["type"] == "Home"

    def test_minimal_supporter(self):
        payload = map_constituent(Supporter(id="s1", first_name="Ada")).to_payload()

        assert "email" not in payload
        assert "phone" not in payload
        assert "address" not in payload


class TestGiftMapper:
    """Test donation to gift mapping."""

    def test_one_off(self, mapper, donation_factory):
        donation = replace(donation_factory("d1"), comment="In memory of Grace")

        gift = mapper.map(donation, RecurringContext())

        assert gift.lookup_id == "d1"
        assert gift.type == GIFT_TYPE_DONATION
        assert gift.amount == Decimal("50.00")
        assert gift.date == "2025-03-01"
        assert gift.subtype == ""
        assert gift.origin == ""
        assert gift.linked_gifts == []
        assert gift.batch_prefix == "FundraiseUp"
        assert gift.is_manual is True
        assert gift.payment_method == "Credit card"
        assert gift.reference == "In memory of Grace"
        assert gift.constituent_id == ""

        split = gift.gift_splits[0]
        assert len(gift.gift_splits) == 1
        assert split.amount == Decimal("50.00")
        assert (split.fund_id, split.campaign_id, split.appeal_id) == ("fund-1", "camp-1", "appeal-1")

    def test_external_id_on_every_gift(self, mapper, donation_factory):
        one_off = mapper.map(donation_factory("d1"), RecurringContext())
        installment = mapper.map(
            donation_factory("d2", recurring_id="s1", installment="2"),
            RecurringContext(sequence_number=2, anchor_gift_id="g1"),
        )

        assert one_off.external_id == "d1"
        assert installment.external_id == "d2"
        assert installment.to_payload()["external_id"] == "d2"

    def test_date_is_utc_calendar_day(self, mapper, donation_factory):
        """A late-evening donation west of UTC lands on the next UTC day."""
        created_at = datetime(2025, 3, 1, 22, 30, tzinfo=timezone(timedelta(hours=-5)))

        gift = mapper.map(donation_factory("d1", created_at=created_at), RecurringContext())

        assert gift.date == "2025-03-02"

    def test_configured_gift_type(self, donation_factory):
        mapper = GiftMapper(fund_id="f", gift_type="RecurringGiftPayment")

        assert mapper.map(donation_factory("d1"), RecurringContext()).type == "RecurringGiftPayment"

    def test_first_installment(self, mapper, donation_factory):
        donation = donation_factory("d1", recurring_id="s1", installment="1")

        gift = mapper.map(donation, RecurringContext(sequence_number=1, is_first=True))

        assert gift.lookup_id == "s1"
        assert gift.type == GIFT_TYPE_RECURRING_GIFT
        assert gift.subtype == "Recurring"
        assert gift.linked_gifts == []
        assert json.loads(gift.origin) == {"donation_id": "d1", "name": "FundraiseUp"}

    def test_later_installment_links_anchor(self, mapper, donation_factory):
        donation = donation_factory("d2", recurring_id="s1", installment="2")

        gift = mapper.map(donation, RecurringContext(sequence_number=2, anchor_gift_id="g1"))

        assert gift.type == GIFT_TYPE_RECURRING_GIFT_PAYMENT
        assert gift.linked_gifts == ["g1"]
        assert gift.decoded_origin().donation_id == "d2"

    def test_payment_without_anchor_has_no_link(self, mapper, donation_factory):
        donation = donation_factory("d2", recurring_id="s1", installment="2")

        gift = mapper.map(donation, RecurringContext(sequence_number=2))

        assert gift.linked_gifts == []

    def test_source_name_in_origin(self, donation_factory):
        mapper = GiftMapper(fund_id="f", source_name="FRU")
        gift = mapper.map(donation_factory("d1", recurring_id="s1", installment="1"), RecurringContext(is_first=True))

        assert gift.decoded_origin().name == "FRU"

    def test_invalid_amount(self, mapper, donation_factory):
        with pytest.raises(InvalidAmountError):
            mapper.map(donation_factory("d1", amount="12,50"), RecurringContext())

    def test_missing_created_at(self, mapper):
        donation = Donation(id="d1", amount="5.00", supporter=Supporter(id="s1"))

        with pytest.raises(ValidationError):
            mapper.map(donation, RecurringContext())

    def test_from_settings(self):
        config = type("Config", (), {
            "gift_fund_id": "F",
            "gift_campaign_id": "C",
            "gift_appeal_id": "A",
            "gift_type": "Donation",
            "gift_batch_prefix": "FRU",
            "gift_source_name": "FundraiseUp",
        })()

        mapper = GiftMapper.from_settings(config)

        assert (mapper.fund_id, mapper.campaign_id, mapper.appeal_id) == ("F", "C", "A")
        assert mapper.batch_prefix == "FRU"
