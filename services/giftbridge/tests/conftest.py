"""
Pytest fixtures for giftbridge tests.

In-memory stand-ins for FundraiseUp, Blackbaud and the checkpoint store
record every call so tests can assert on remote reads and writes.
"""

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from services.giftbridge.fundraiseup import DonationNotFoundError
from services.giftbridge.mapper import GiftMapper
from services.giftbridge.models import (
    Constituent,
    Donation,
    Gift,
    RecurringPlan,
    Supporter,
)


class FakeSource:
    """FundraiseUp stand-in serving a fixed list of donations."""

    def __init__(self, donations: Optional[List[Donation]] = None):
        self.donations = list(donations or [])
        self.since_calls: List[datetime] = []
        self.cursor_calls: List[str] = []
        self.fetched_ids: List[str] = []

    def donations_since(self, since: datetime, starting_after: str = "") -> List[Donation]:
        self.since_calls.append(since)
        self.cursor_calls.append(starting_after)
        listed = [
            donation for donation in self.donations
            if donation.created_at is None or donation.created_at >= since
        ]
        if starting_after:
            ids = [donation.id for donation in listed]
            listed = listed[ids.index(starting_after) + 1:]
        return listed

    def donation(self, donation_id: str) -> Donation:
        self.fetched_ids.append(donation_id)
        for donation in self.donations:
            if donation.id == donation_id:
                return donation
        raise DonationNotFoundError(f"donation {donation_id} not found", 404)


class FakeSink:
    """Blackbaud stand-in keeping constituents and gifts in memory."""

    def __init__(self):
        self.constituents: Dict[str, Constituent] = {}
        self.gifts: Dict[str, Gift] = {}
        self.list_calls: List[str] = []
        self.search_calls: List[str] = []
        self.writes = 0
        self._next = 0

    def _id(self, prefix: str) -> str:
        self._next += 1
        return f"{prefix}{self._next}"

    def search_constituents(self, email: str) -> List[Constituent]:
        self.search_calls.append(email)
        return [
            constituent for constituent in self.constituents.values()
            if constituent.email is not None and constituent.email.address == email
        ]

    def create_constituent(self, constituent: Constituent) -> str:
        self.writes += 1
        constituent.id = self._id("c")
        self.constituents[constituent.id] = constituent
        return constituent.id

    def list_gifts_by_constituent(self, constituent_id: str, gift_types=None) -> List[Gift]:
        self.list_calls.append(constituent_id)
        return [
            gift for gift in self.gifts.values()
            if gift.constituent_id == constituent_id
            and (not gift_types or gift.type in gift_types)
        ]

    def create_gift(self, gift: Gift) -> str:
        self.writes += 1
        gift_id = self._id("g")
        self.gifts[gift_id] = replace(gift, id=gift_id)
        return gift_id

    def update_gift(self, gift_id: str, gift: Gift) -> None:
        self.writes += 1
        self.gifts[gift_id] = replace(gift, id=gift_id)

    def gifts_of_type(self, gift_type: str) -> List[Gift]:
        return [gift for gift in self.gifts.values() if gift.type == gift_type]


class MemoryCheckpoint:
    """Checkpoint store recording every pending-list write."""

    def __init__(self, last_sync: Optional[datetime] = None, pending: Optional[List[str]] = None):
        self.last_sync = last_sync
        self.cursor = ""
        self.pending = list(pending or [])
        self.set_pending_calls: List[List[str]] = []
        self.set_last_sync_calls: List[datetime] = []
        self.removed: List[str] = []

    def last_sync_time(self) -> Optional[datetime]:
        return self.last_sync

    def sync_cursor(self) -> str:
        return self.cursor

    def set_last_sync_time(self, when: datetime, cursor: str = "") -> None:
        self.set_last_sync_calls.append(when)
        self.last_sync = when
        self.cursor = cursor

    def pending_ids(self) -> List[str]:
        return list(self.pending)

    def set_pending_ids(self, donation_ids: List[str]) -> None:
        self.set_pending_calls.append(list(donation_ids))
        self.pending = list(donation_ids)

    def remove_pending_id(self, donation_id: str) -> None:
        self.removed.append(donation_id)
        self.pending = [pending for pending in self.pending if pending != donation_id]


class MemoryCredentials:
    def __init__(self, token: str = "refresh-1"):
        self.token = token
        self.saved: List[str] = []

    def get(self) -> str:
        return self.token

    def save(self, secret: str) -> None:
        self.saved.append(secret)
        self.token = secret


def make_donation(
    donation_id: str,
    amount: str = "50.00",
    email: str = "ada@example.com",
    recurring_id: str = "",
    installment: str = "",
    created_at: Optional[datetime] = None,
    supporter: bool = True,
    payment_method: str = "credit_card",
) -> Donation:
    return Donation(
        id=donation_id,
        amount=amount,
        currency="USD",
        created_at=created_at or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc),
        supporter=Supporter(id="s-" + email, first_name="Ada", last_name="Lovelace", email=email) if supporter else None,
        recurring_plan=RecurringPlan(id=recurring_id) if recurring_id else None,
        installment=installment,
        payment_method=payment_method,
    )


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def donation_factory():
    return make_donation


@pytest.fixture
def fake_source_factory():
    return FakeSource


@pytest.fixture
def fake_sink():
    return FakeSink()


@pytest.fixture
def checkpoint_factory():
    return MemoryCheckpoint


@pytest.fixture
def credentials():
    return MemoryCredentials()


@pytest.fixture
def mapper():
    return GiftMapper(fund_id="fund-1", campaign_id="camp-1", appeal_id="appeal-1")


@pytest.fixture
def fixed_now():
    return datetime(2025, 3, 10, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def gift_factory():
    def _gift(gift_id: str, constituent_id: str, lookup_id: str, gift_type: str, origin: str = "") -> Gift:
        return Gift(
            id=gift_id,
            amount=Decimal("10"),
            date="2025-01-01",
            type=gift_type,
            lookup_id=lookup_id,
            origin=origin,
            constituent_id=constituent_id,
        )
    return _gift
