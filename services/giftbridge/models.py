"""
Data model for the FundraiseUp -> Blackbaud sync.

Source records (Donation, Supporter) are parsed from FundraiseUp API payloads
and never mutated. Destination records (Constituent, Gift) serialize to and
from Blackbaud SKY API JSON.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .errors import OriginDecodeError


# Blackbaud gift types
GIFT_TYPE_DONATION = "Donation"
GIFT_TYPE_RECURRING_GIFT = "RecurringGift"
GIFT_TYPE_RECURRING_GIFT_PAYMENT = "RecurringGiftPayment"

GIFT_TYPES = (
    GIFT_TYPE_DONATION,
    GIFT_TYPE_RECURRING_GIFT,
    GIFT_TYPE_RECURRING_GIFT_PAYMENT,
)

GIFT_SUBTYPE_RECURRING = "Recurring"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an RFC 3339 timestamp into an aware datetime (UTC if naive).

    Returns None for empty values.
    """
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Format a datetime as RFC 3339 in UTC with second precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# ============================================================================
# Source (FundraiseUp)
# ============================================================================

@dataclass(frozen=True)
class SupporterAddress:
    line1: str = ""
    line2: str = ""
    city: str = ""
    region: str = ""
    postal_code: str = ""
    country: str = ""

    @classmethod
    def from_api(cls, raw: Optional[Dict[str, Any]]) -> Optional["SupporterAddress"]:
        if not raw:
            return None
        return cls(
            line1=raw.get("line1") or "",
            line2=raw.get("line2") or "",
            city=raw.get("city") or "",
            region=raw.get("region") or "",
            postal_code=raw.get("postal_code") or "",
            country=raw.get("country") or "",
        )


@dataclass(frozen=True)
class Supporter:
    """A person who has donated via FundraiseUp."""
    id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: Optional[SupporterAddress] = None

    @classmethod
    def from_api(cls, raw: Optional[Dict[str, Any]]) -> Optional["Supporter"]:
        if not raw:
            return None
        return cls(
            id=raw.get("id") or "",
            first_name=raw.get("first_name") or "",
            last_name=raw.get("last_name") or "",
            email=(raw.get("email") or "").strip(),
            phone=raw.get("phone") or "",
            address=SupporterAddress.from_api(raw.get("address")),
        )


@dataclass(frozen=True)
class RecurringPlan:
    id: str
    frequency: str = ""
    status: str = ""

    @classmethod
    def from_api(cls, raw: Optional[Dict[str, Any]]) -> Optional["RecurringPlan"]:
        if not raw:
            return None
        return cls(
            id=raw.get("id") or "",
            frequency=raw.get("frequency") or "",
            status=raw.get("status") or "",
        )


@dataclass(frozen=True)
class Donation:
    """
    A completed donation from FundraiseUp.

    `amount` stays the raw decimal string from the API; GiftMapper parses it.
    `installment` is the raw installment number ("1", "2", ...) of a
    recurring plan payment.
    """
    id: str
    amount: str
    currency: str = ""
    created_at: Optional[datetime] = None
    supporter: Optional[Supporter] = None
    recurring_plan: Optional[RecurringPlan] = None
    installment: str = ""
    comment: str = ""
    payment_method: str = ""
    status: str = ""

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "Donation":
        payment = raw.get("payment") or {}
        installment = raw.get("installment")
        return cls(
            id=raw.get("id") or "",
            amount=str(raw.get("amount") if raw.get("amount") is not None else ""),
            currency=raw.get("currency") or "",
            created_at=parse_timestamp(raw.get("created_at")),
            supporter=Supporter.from_api(raw.get("supporter")),
            recurring_plan=RecurringPlan.from_api(raw.get("recurring_plan")),
            installment="" if installment is None else str(installment),
            comment=raw.get("comment") or "",
            payment_method=payment.get("method") or "",
            status=raw.get("status") or "",
        )

    @property
    def recurring_id(self) -> str:
        """Recurring series id, empty for one-off donations."""
        if self.recurring_plan is None:
            return ""
        return self.recurring_plan.id

    @property
    def is_recurring(self) -> bool:
        return bool(self.recurring_id)

    @property
    def installment_number(self) -> int:
        """1-indexed position in the series; missing or unparseable is 1."""
        try:
            number = int(self.installment.strip())
        except ValueError:
            return 1
        return max(number, 1)


# ============================================================================
# Destination (Blackbaud Raiser's Edge NXT)
# ============================================================================

@dataclass
class Address:
    address_lines: str = ""
    city: str = ""
    state: str = ""
    post_code: str = ""
    country: str = ""
    type: str = "Home"
    primary: bool = True

    def to_payload(self) -> Dict[str, Any]:
        return {
            "address_lines": self.address_lines,
            "city": self.city,
            "state": self.state,
            "post_code": self.post_code,
            "country": self.country,
            "type": self.type,
            "primary": self.primary,
        }


@dataclass
class Email:
    address: str
    type: str = "Email"
    primary: bool = True

    def to_payload(self) -> Dict[str, Any]:
        return {"address": self.address, "type": self.type, "primary": self.primary}


@dataclass
class Phone:
    number: str
    type: str = "Mobile"
    primary: bool = True

    def to_payload(self) -> Dict[str, Any]:
        return {"number": self.number, "type": self.type, "primary": self.primary}


@dataclass
class Constituent:
    """A donor record in Raiser's Edge NXT. `id` is assigned by Blackbaud."""
    first_name: str = ""
    last_name: str = ""
    type: str = "Individual"
    email: Optional[Email] = None
    phone: Optional[Phone] = None
    address: Optional[Address] = None
    id: str = ""

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "first": self.first_name,
            "last": self.last_name,
            "type": self.type,
        }
        if self.email:
            payload["email"] = self.email.to_payload()
        if self.phone:
            payload["phone"] = self.phone.to_payload()
        if self.address:
            payload["address"] = self.address.to_payload()
        return payload

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "Constituent":
        email = raw.get("email")
        if isinstance(email, dict):
            email = Email(address=email.get("address") or "")
        elif isinstance(email, str) and email:
            email = Email(address=email)
        else:
            email = None
        return cls(
            id=str(raw.get("id") or ""),
            first_name=raw.get("first") or "",
            last_name=raw.get("last") or "",
            type=raw.get("type") or "Individual",
            email=email,
        )


@dataclass(frozen=True)
class GiftOrigin:
    """
    Source record of a gift, stored in the gift's `origin` field as JSON.

    Wire format: {"donation_id": "...", "name": "..."}.
    """
    donation_id: str = ""
    name: str = ""

    def to_json(self) -> str:
        return json.dumps({"donation_id": self.donation_id, "name": self.name})

    @classmethod
    def from_json(cls, value: Optional[str]) -> "GiftOrigin":
        """Decode an origin string; empty input is the zero value."""
        if not value:
            return cls()
        try:
            data = json.loads(value)
        except json.JSONDecodeError as exc:
            raise OriginDecodeError(f"malformed gift origin {value!r}: {exc}") from exc
        if not isinstance(data, dict):
            raise OriginDecodeError(f"gift origin is not a JSON object: {value!r}")
        return cls(
            donation_id=str(data.get("donation_id") or ""),
            name=str(data.get("name") or ""),
        )


@dataclass
class GiftSplit:
    amount: Decimal
    fund_id: str
    campaign_id: str = ""
    appeal_id: str = ""

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "amount": {"value": float(self.amount)},
            "fund_id": self.fund_id,
        }
        if self.campaign_id:
            payload["campaign_id"] = self.campaign_id
        if self.appeal_id:
            payload["appeal_id"] = self.appeal_id
        return payload


@dataclass
class Gift:
    """A gift in Raiser's Edge NXT. `id` is assigned by Blackbaud."""
    amount: Decimal
    date: str
    type: str = GIFT_TYPE_DONATION
    lookup_id: str = ""
    subtype: str = ""
    origin: str = ""
    linked_gifts: List[str] = field(default_factory=list)
    constituent_id: str = ""
    gift_splits: List[GiftSplit] = field(default_factory=list)
    batch_prefix: str = ""
    is_manual: bool = False
    payment_method: str = ""
    reference: str = ""
    external_id: str = ""
    id: str = ""

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "amount": {"value": float(self.amount)},
            "constituent_id": self.constituent_id,
            "date": self.date,
            "type": self.type,
        }
        optional = {
            "lookup_id": self.lookup_id,
            "subtype": self.subtype,
            "origin": self.origin,
            "batch_prefix": self.batch_prefix,
            "payment_method": self.payment_method,
            "reference": self.reference,
            "external_id": self.external_id,
        }
        payload.update({key: value for key, value in optional.items() if value})
        if self.is_manual:
            payload["is_manual"] = True
        if self.linked_gifts:
            payload["linked_gifts"] = list(self.linked_gifts)
        if self.gift_splits:
            payload["gift_splits"] = [split.to_payload() for split in self.gift_splits]
        return payload

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "Gift":
        amount = raw.get("amount") or {}
        value = amount.get("value", 0) if isinstance(amount, dict) else amount
        return cls(
            id=str(raw.get("id") or ""),
            amount=Decimal(str(value or 0)),
            date=(raw.get("date") or "")[:10],
            type=raw.get("type") or "",
            lookup_id=raw.get("lookup_id") or "",
            subtype=raw.get("subtype") or "",
            origin=raw.get("origin") or "",
            linked_gifts=[str(g) for g in raw.get("linked_gifts") or []],
            constituent_id=str(raw.get("constituent_id") or ""),
            batch_prefix=raw.get("batch_prefix") or "",
            is_manual=bool(raw.get("is_manual")),
            payment_method=raw.get("payment_method") or "",
            reference=raw.get("reference") or "",
            external_id=raw.get("external_id") or "",
        )

    def decoded_origin(self) -> GiftOrigin:
        return GiftOrigin.from_json(self.origin)


# ============================================================================
# Reconciliation results
# ============================================================================

@dataclass(frozen=True)
class RecurringContext:
    """
    Position of a donation in its recurring series.

    The zero value describes a one-off donation.
    """
    sequence_number: int = 0
    is_first: bool = False
    anchor_gift_id: str = ""


@dataclass
class DonationOutcome:
    """Outcome of reconciling a single donation."""
    donation_id: str
    constituent_id: str = ""
    constituent_created: bool = False
    gift_id: str = ""
    created: bool = False
    updated: bool = False
    skipped_existing: bool = False
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncResult:
    """
    Summary of one batch run.

    Tracks constituent and gift outcomes separately; errors holds one entry
    per failed donation.
    """
    donations_processed: int = 0
    constituents_created: int = 0
    constituents_existing: int = 0
    gifts_created: int = 0
    gifts_updated: int = 0
    gifts_skipped_existing: int = 0
    resumed: bool = False
    dry_run: bool = False
    cancelled: bool = False
    errors: List[Exception] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> float:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    def record(self, outcome: DonationOutcome) -> None:
        """Fold one donation outcome into the counters."""
        self.donations_processed += 1
        if outcome.error is not None:
            self.errors.append(outcome.error)
            return
        if outcome.constituent_created:
            self.constituents_created += 1
        else:
            self.constituents_existing += 1
        if outcome.created:
            self.gifts_created += 1
        if outcome.updated:
            self.gifts_updated += 1
        if outcome.skipped_existing:
            self.gifts_skipped_existing += 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "donations_processed": self.donations_processed,
            "constituents_created": self.constituents_created,
            "constituents_existing": self.constituents_existing,
            "gifts_created": self.gifts_created,
            "gifts_updated": self.gifts_updated,
            "gifts_skipped_existing": self.gifts_skipped_existing,
            "resumed": self.resumed,
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "errors": [str(error) for error in self.errors],
            "duration_seconds": self.duration_seconds,
        }
