"""
Dry-run wrapper for the Blackbaud sink.

Reads go to the real client; writes are logged and answered with synthetic
ids, so a dry run exercises the whole pipeline without touching Raiser's Edge.
"""

import itertools
import threading
from typing import List, Optional, Sequence

from .log_config import get_logger
from .models import Constituent, Gift

logger = get_logger(__name__)


class DryRunSink:
    """Delegates reads to `sink`, logs writes instead of performing them."""

    def __init__(self, sink):
        self._sink = sink
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def _fake_id(self, kind: str) -> str:
        with self._lock:
            return f"dry-run-{kind}-{next(self._counter)}"

    def search_constituents(self, email: str) -> List[Constituent]:
        return self._sink.search_constituents(email)

    def list_gifts_by_constituent(
        self,
        constituent_id: str,
        gift_types: Optional[Sequence[str]] = None,
    ) -> List[Gift]:
        # Synthetic constituents do not exist remotely.
        if constituent_id.startswith("dry-run-"):
            return []
        return self._sink.list_gifts_by_constituent(constituent_id, gift_types)

    def create_constituent(self, constituent: Constituent) -> str:
        fake_id = self._fake_id("constituent")
        logger.info(
            "Would create constituent",
            dry_run=True,
            fake_id=fake_id,
            first_name=constituent.first_name,
            last_name=constituent.last_name,
            email=constituent.email.address if constituent.email else "",
            type=constituent.type,
        )
        return fake_id

    def create_gift(self, gift: Gift) -> str:
        fake_id = self._fake_id("gift")
        logger.info(
            "Would create gift",
            dry_run=True,
            fake_id=fake_id,
            amount=str(gift.amount),
            type=gift.type,
            lookup_id=gift.lookup_id,
            constituent_id=gift.constituent_id,
            linked_gifts=gift.linked_gifts,
            date=gift.date,
        )
        return fake_id

    def update_gift(self, gift_id: str, gift: Gift) -> None:
        logger.info(
            "Would update gift",
            dry_run=True,
            gift_id=gift_id,
            amount=str(gift.amount),
            type=gift.type,
            lookup_id=gift.lookup_id,
        )
