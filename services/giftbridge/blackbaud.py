"""
Blackbaud SKY API client (destination sink).

Every request carries a bearer token from the TokenCache and the SKY API
subscription key.
"""

from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx

from .client import HTTPClient, decode_json
from .errors import DependencyError, RetryableHTTPError
from .log_config import get_logger
from .models import Constituent, Gift
from .oauth import TokenCache

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.sky.blackbaud.com"


class BlackbaudAPIError(DependencyError):
    """SKY API request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class BlackbaudClient:
    """Constituent and gift operations against Raiser's Edge NXT."""

    def __init__(
        self,
        tokens: TokenCache,
        subscription_key: str,
        base_url: str = DEFAULT_BASE_URL,
        http: Optional[HTTPClient] = None,
    ):
        if not subscription_key:
            raise ValueError("Blackbaud subscription key is required")
        self.base_url = base_url.rstrip("/")
        self._tokens = tokens
        self._subscription_key = subscription_key
        self._http = http or HTTPClient()

    def close(self):
        self._http.close()

    def _request(
        self,
        method: str,
        url: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Any = None,
    ) -> httpx.Response:
        # AuthError from the token cache propagates untouched.
        headers = {
            "Authorization": f"Bearer {self._tokens.access_token()}",
            "Bb-Api-Subscription-Key": self._subscription_key,
            "Content-Type": "application/json",
        }
        try:
            response = self._http.request(method, url, headers=headers, json=json_body, params=params)
        except (httpx.HTTPError, RetryableHTTPError) as exc:
            raise BlackbaudAPIError(f"{method} {url}: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise BlackbaudAPIError(
                f"{method} {url} failed with status {response.status_code}: {response.text[:200]}",
                response.status_code,
            )
        return response

    def _json(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            data = decode_json(response)
        except ValueError as exc:
            raise BlackbaudAPIError(str(exc), response.status_code) from exc
        if not isinstance(data, dict):
            raise BlackbaudAPIError("expected a JSON object", response.status_code)
        return data

    def _created_id(self, response: httpx.Response, kind: str) -> str:
        record_id = str(self._json(response).get("id") or "")
        if not record_id:
            raise BlackbaudAPIError(f"create {kind} response carries no id", response.status_code)
        return record_id

    def search_constituents(self, email: str) -> List[Constituent]:
        """Constituents matching an email address."""
        response = self._request(
            "GET",
            f"{self.base_url}/constituent/v1/constituents/search",
            params={"search_text": email},
        )
        body = self._json(response)
        return [Constituent.from_api(raw) for raw in body.get("value") or []]

    def create_constituent(self, constituent: Constituent) -> str:
        response = self._request(
            "POST",
            f"{self.base_url}/constituent/v1/constituents",
            json_body=constituent.to_payload(),
        )
        constituent_id = self._created_id(response, "constituent")
        logger.info("Created constituent", constituent_id=constituent_id)
        return constituent_id

    def list_gifts_by_constituent(
        self,
        constituent_id: str,
        gift_types: Optional[Sequence[str]] = None,
    ) -> List[Gift]:
        """
        All gifts of a constituent, optionally filtered by gift type.

        Follows next_link until the listing is exhausted.
        """
        params = [("constituent_id", constituent_id)]
        params.extend(("gift_type", gift_type) for gift_type in gift_types or [])

        gifts: List[Gift] = []
        url: Optional[str] = f"{self.base_url}/gift/v1/gifts"
        page_params: Any = params
        while url:
            body = self._json(self._request("GET", url, params=page_params))
            gifts.extend(Gift.from_api(raw) for raw in body.get("value") or [])
            url = body.get("next_link") or None
            # next_link already carries the query string
            page_params = None

        logger.debug("Listed gifts", constituent_id=constituent_id, count=len(gifts))
        return gifts

    def create_gift(self, gift: Gift) -> str:
        response = self._request("POST", f"{self.base_url}/gift/v1/gifts", json_body=gift.to_payload())
        gift_id = self._created_id(response, "gift")
        logger.info("Created gift", gift_id=gift_id, gift_type=gift.type, lookup_id=gift.lookup_id)
        return gift_id

    def update_gift(self, gift_id: str, gift: Gift) -> None:
        self._request(
            "PATCH",
            f"{self.base_url}/gift/v1/gifts/{quote(gift_id, safe='')}",
            json_body=gift.to_payload(),
        )
        logger.info("Updated gift", gift_id=gift_id)
