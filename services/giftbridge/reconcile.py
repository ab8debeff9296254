"""
Per-donation reconciliation pipeline.

For each donation: find or create the constituent, skip it if Blackbaud
already holds its gift, otherwise place it in its recurring series, map it
and create the gift. Existing gifts are looked up through a GiftCache that
lives for one batch run.
"""

from typing import Dict, List, Optional, Tuple

from .errors import NoDonorInfoError, OrphanedSeriesError, ReconciliationError
from .log_config import get_logger
from .mapper import GiftMapper, map_constituent
from .models import (
    GIFT_TYPE_RECURRING_GIFT,
    Donation,
    DonationOutcome,
    Gift,
    RecurringContext,
)

logger = get_logger(__name__)

STAGE_CONSTITUENT = "constituent"
STAGE_DUPLICATE_CHECK = "duplicate_check"
STAGE_RECURRING_CONTEXT = "recurring_context"
STAGE_MAP = "map"
STAGE_CREATE_GIFT = "create_gift"


class GiftCache:
    """
    Gifts per constituent, fetched once per run.

    Each constituent's full gift list is loaded on first use. Gifts created
    during the run are appended so later donations see them.
    """

    def __init__(self, sink):
        self._sink = sink
        self._gifts: Dict[str, List[Gift]] = {}

    def gifts(self, constituent_id: str) -> List[Gift]:
        if constituent_id not in self._gifts:
            self._gifts[constituent_id] = list(self._sink.list_gifts_by_constituent(constituent_id))
            logger.debug(
                "Loaded constituent gifts",
                constituent_id=constituent_id,
                count=len(self._gifts[constituent_id])
            )
        return self._gifts[constituent_id]

    def add(self, constituent_id: str, gift: Gift) -> None:
        self._gifts.setdefault(constituent_id, []).append(gift)

    def __contains__(self, constituent_id: str) -> bool:
        return constituent_id in self._gifts


class ConstituentResolver:
    """Finds a donor's constituent by email, creating one when none matches."""

    def __init__(self, sink):
        self._sink = sink

    def resolve(self, donation: Donation) -> Tuple[str, bool]:
        """
        Return (constituent_id, created).

        Raises:
            NoDonorInfoError: When the donation has no supporter
        """
        supporter = donation.supporter
        if supporter is None:
            raise NoDonorInfoError(f"donation {donation.id} has no supporter")

        if supporter.email:
            for constituent in self._sink.search_constituents(supporter.email):
                if constituent.id:
                    return constituent.id, False

        constituent_id = self._sink.create_constituent(map_constituent(supporter))
        return constituent_id, True


class DuplicateDetector:
    """Finds the gift a donation already produced, if any."""

    def __init__(self, cache: GiftCache):
        self._cache = cache

    def find(self, constituent_id: str, donation: Donation) -> Optional[Gift]:
        """
        One-off donations match on lookup id == donation id. Recurring
        installments share the series lookup id and are told apart by the
        donation id recorded in the gift origin.

        Raises:
            OriginDecodeError: When a series gift has a malformed origin
        """
        gifts = self._cache.gifts(constituent_id)

        if not donation.is_recurring:
            for gift in gifts:
                if gift.lookup_id == donation.id:
                    return gift
            return None

        for gift in gifts:
            if gift.lookup_id != donation.recurring_id:
                continue
            if gift.decoded_origin().donation_id == donation.id:
                return gift
        return None


class RecurringContextResolver:
    """Places a donation in its recurring series."""

    def __init__(self, cache: GiftCache):
        self._cache = cache

    def resolve(self, constituent_id: str, donation: Donation) -> RecurringContext:
        """
        Installment 1 starts the series. Later installments link to the
        series' RecurringGift anchor. A later installment with no series
        gifts at all becomes the anchor itself.

        Raises:
            OrphanedSeriesError: When series gifts exist but none is the anchor
        """
        if not donation.is_recurring:
            return RecurringContext()

        sequence = donation.installment_number
        if sequence == 1:
            return RecurringContext(sequence_number=1, is_first=True)

        series = [
            gift for gift in self._cache.gifts(constituent_id)
            if gift.lookup_id == donation.recurring_id
        ]
        anchors = [gift for gift in series if gift.type == GIFT_TYPE_RECURRING_GIFT]

        if anchors:
            if len(anchors) > 1:
                logger.warning(
                    "Recurring series has several anchors, linking to the first",
                    recurring_id=donation.recurring_id,
                    anchor_gift_ids=[gift.id for gift in anchors]
                )
            return RecurringContext(
                sequence_number=sequence,
                is_first=False,
                anchor_gift_id=anchors[0].id,
            )

        if series:
            raise OrphanedSeriesError(donation.recurring_id, [gift.id for gift in series])

        logger.warning(
            "No earlier installment found, treating donation as first in series",
            donation_id=donation.id,
            recurring_id=donation.recurring_id,
            installment=sequence
        )
        return RecurringContext(sequence_number=sequence, is_first=True)


class ReconciliationEngine:
    """
    Runs the reconciliation pipeline for one donation at a time.

    `process` never raises: any failure is returned on the outcome wrapped in
    a ReconciliationError naming the stage that failed.
    """

    def __init__(self, sink, mapper: GiftMapper, cache: GiftCache):
        self.sink = sink
        self.mapper = mapper
        self.cache = cache
        self.constituents = ConstituentResolver(sink)
        self.duplicates = DuplicateDetector(cache)
        self.recurring = RecurringContextResolver(cache)

    def process(self, donation: Donation) -> DonationOutcome:
        outcome = DonationOutcome(donation_id=donation.id)
        stage = STAGE_CONSTITUENT
        try:
            constituent_id, created = self.constituents.resolve(donation)
            outcome.constituent_id = constituent_id
            outcome.constituent_created = created

            stage = STAGE_DUPLICATE_CHECK
            existing = self.duplicates.find(constituent_id, donation)
            if existing is not None:
                logger.info(
                    "Gift already exists, skipping",
                    donation_id=donation.id,
                    gift_id=existing.id,
                    lookup_id=existing.lookup_id
                )
                outcome.gift_id = existing.id
                outcome.skipped_existing = True
                return outcome

            stage = STAGE_RECURRING_CONTEXT
            context = self.recurring.resolve(constituent_id, donation)

            stage = STAGE_MAP
            gift = self.mapper.map(donation, context)
            gift.constituent_id = constituent_id

            stage = STAGE_CREATE_GIFT
            gift.id = self.sink.create_gift(gift)
        except Exception as exc:
            outcome.error = ReconciliationError(stage, donation.id, exc)
            logger.error(
                "Failed to process donation",
                donation_id=donation.id,
                stage=stage,
                error=str(exc),
                error_type=type(exc).__name__
            )
            return outcome

        self.cache.add(constituent_id, gift)
        outcome.gift_id = gift.id
        outcome.created = True
        logger.info(
            "Created gift",
            donation_id=donation.id,
            gift_id=gift.id,
            gift_type=gift.type,
            constituent_id=constituent_id,
            sequence_number=context.sequence_number
        )
        return outcome
