"""
FundraiseUp API client (donation source).

Lists donations created since a point in time using cursor pagination and
fetches single donations by id.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from .client import HTTPClient, decode_json
from .errors import DependencyError, RetryableHTTPError
from .log_config import get_logger
from .models import Donation, format_timestamp

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.fundraiseup.com/v1"
PAGE_SIZE = 100


class FundraiseUpAPIError(DependencyError):
    """FundraiseUp API request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class DonationNotFoundError(FundraiseUpAPIError):
    """Donation id does not exist in FundraiseUp."""
    pass


class FundraiseUpClient:
    """Read-only client for FundraiseUp donations."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        http: Optional[HTTPClient] = None,
    ):
        if not api_key:
            raise ValueError("FundraiseUp API key is required")
        self.base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._http = http or HTTPClient()

    def close(self):
        self._http.close()

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            return self._http.get(url, headers=self._headers, params=params)
        except (httpx.HTTPError, RetryableHTTPError) as exc:
            raise FundraiseUpAPIError(f"GET {url}: {exc}") from exc

    def _decode(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            data = decode_json(response)
        except ValueError as exc:
            raise FundraiseUpAPIError(str(exc), response.status_code) from exc
        if not isinstance(data, dict):
            raise FundraiseUpAPIError("expected a JSON object", response.status_code)
        return data

    def _parse(self, raw: Any) -> Donation:
        try:
            return Donation.from_api(raw)
        except (ValueError, TypeError, AttributeError) as exc:
            donation_id = raw.get("id") if isinstance(raw, dict) else None
            raise FundraiseUpAPIError(f"malformed donation {donation_id!r}: {exc}") from exc

    def _fetch_page(self, since: datetime, starting_after: str) -> Tuple[List[Donation], bool, str]:
        params = {"created[gte]": format_timestamp(since), "limit": PAGE_SIZE}
        if starting_after:
            params["starting_after"] = starting_after

        response = self._get(f"{self.base_url}/donations", params)
        if response.status_code != 200:
            raise FundraiseUpAPIError(
                f"listing donations failed with status {response.status_code}: {response.text[:200]}",
                response.status_code,
            )

        body = self._decode(response)
        records = body.get("data") or []
        donations = []
        for raw in records:
            try:
                donations.append(self._parse(raw))
            except FundraiseUpAPIError as exc:
                logger.error("Skipping malformed donation", error=str(exc))
        # Cursor continues after the last record, even a skipped one.
        last_id = str(records[-1].get("id") or "") if records and isinstance(records[-1], dict) else ""
        return donations, bool(body.get("has_more")), last_id

    def donations_since(self, since: datetime, starting_after: str = "") -> List[Donation]:
        """
        Fetch every donation created at or after `since`, oldest first.

        A non-empty `starting_after` continues the listing after that
        donation id instead of from its start.

        Raises:
            FundraiseUpAPIError: When any page request fails
        """
        donations: List[Donation] = []

        while True:
            page, has_more, last_id = self._fetch_page(since, starting_after)
            donations.extend(page)
            if not has_more or not last_id:
                break
            starting_after = last_id

        logger.info(
            "Fetched donations",
            since=format_timestamp(since),
            count=len(donations)
        )
        return donations

    def donation(self, donation_id: str) -> Donation:
        """
        Fetch one donation by id.

        Raises:
            DonationNotFoundError: When FundraiseUp answers 404
            FundraiseUpAPIError: For any other failure
        """
        if not donation_id:
            raise ValueError("donation id is required")

        response = self._get(f"{self.base_url}/donations/{quote(donation_id, safe='')}")
        if response.status_code == 404:
            raise DonationNotFoundError(f"donation {donation_id} not found", 404)
        if response.status_code != 200:
            raise FundraiseUpAPIError(
                f"fetching donation {donation_id} failed with status "
                f"{response.status_code}: {response.text[:200]}",
                response.status_code,
            )
        return self._parse(self._decode(response))
