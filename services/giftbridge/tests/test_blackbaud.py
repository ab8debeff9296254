"""
Tests for the Blackbaud SKY API client against a mocked API.
"""

import json
from decimal import Decimal
from unittest.mock import Mock

import httpx
import pytest

from services.giftbridge.blackbaud import BlackbaudAPIError, BlackbaudClient
from services.giftbridge.client import HTTPClient
from services.giftbridge.errors import AuthError
from services.giftbridge.models import Constituent, Email, Gift

BASE_URL = "https://api.sky.example.test"


@pytest.fixture
def tokens():
    cache = Mock()
    cache.access_token.return_value = "access-token"
    return cache


def make_client(handler, tokens, retries=0):
    http = HTTPClient(max_retries=retries, base_delay=0, transport=httpx.MockTransport(handler))
    return BlackbaudClient(tokens, "sub-key", BASE_URL, http=http)


class TestHeaders:
    """Test request authentication."""

    def test_bearer_and_subscription_key(self, tokens):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"count": 0, "value": []})

        make_client(handler, tokens).search_constituents("ada@example.com")

        assert seen[0].headers["Authorization"] == "Bearer access-token"
        assert seen[0].headers["Bb-Api-Subscription-Key"] == "sub-key"

    def test_auth_error_propagates(self, tokens):
        tokens.access_token.side_effect = AuthError("refresh failed")
        handler = Mock()

        with pytest.raises(AuthError):
            make_client(handler, tokens).search_constituents("ada@example.com")
        handler.assert_not_called()


class TestConstituents:
    """Test constituent search and creation."""

    def test_search(self, tokens):
        def handler(request):
            assert request.url.path == "/constituent/v1/constituents/search"
            assert request.url.params["search_text"] == "ada@example.com"
            return httpx.Response(200, json={"count": 1, "value": [
                {"id": "280", "first": "Ada", "last": "Lovelace", "email": "ada@example.com"}
            ]})

        results = make_client(handler, tokens).search_constituents("ada@example.com")

        assert [c.id for c in results] == ["280"]
        assert results[0].email.address == "ada@example.com"

    def test_create(self, tokens):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "281"})

        constituent = Constituent(first_name="Ada", last_name="Lovelace", email=Email("ada@example.com"))
        assert make_client(handler, tokens).create_constituent(constituent) == "281"
        assert bodies[0]["first"] == "Ada"
        assert bodies[0]["email"]["address"] == "ada@example.com"

    def test_create_without_id(self, tokens):
        client = make_client(lambda request: httpx.Response(200, json={}), tokens)

        with pytest.raises(BlackbaudAPIError):
            client.create_constituent(Constituent(first_name="Ada"))


class TestGifts:
    """Test gift listing, creation and update."""

    def test_list_follows_next_link(self, tokens):
        requests = []

        def handler(request):
            requests.append(request)
            if "page=2" in str(request.url):
                return httpx.Response(200, json={"value": [{"id": "g2", "lookup_id": "d2"}]})
            return httpx.Response(200, json={
                "value": [{"id": "g1", "lookup_id": "d1"}],
                "next_link": f"{BASE_URL}/gift/v1/gifts?constituent_id=280&page=2",
            })

        gifts = make_client(handler, tokens).list_gifts_by_constituent("280")

        assert [g.id for g in gifts] == ["g1", "g2"]
        assert requests[0].url.params["constituent_id"] == "280"
        assert str(requests[1].url) == f"{BASE_URL}/gift/v1/gifts?constituent_id=280&page=2"

    def test_list_type_filter(self, tokens):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"value": []})

        make_client(handler, tokens).list_gifts_by_constituent("280", ["RecurringGift", "RecurringGiftPayment"])

        assert requests[0].url.params.get_list("gift_type") == ["RecurringGift", "RecurringGiftPayment"]

    def test_create_gift(self, tokens):
        bodies = []

        def handler(request):
            assert request.method == "POST"
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "g9"})

        gift = Gift(amount=Decimal("20"), date="2025-03-01", lookup_id="d1", constituent_id="280")

        assert make_client(handler, tokens).create_gift(gift) == "g9"
        assert bodies[0]["lookup_id"] == "d1"
        assert bodies[0]["amount"] == {"value": 20.0}

    def test_create_gift_not_resent_after_lost_response(self, tokens):
        """A timed-out create may have been committed, so it is never sent twice."""
        posts = []

        def handler(request):
            posts.append(request)
            if len(posts) == 1:
                raise httpx.ReadTimeout("response lost", request=request)
            return httpx.Response(200, json={"id": f"g{len(posts)}"})

        client = make_client(handler, tokens, retries=3)
        gift = Gift(amount=Decimal("20"), date="2025-03-01", lookup_id="d1", constituent_id="280")

        with pytest.raises(BlackbaudAPIError):
            client.create_gift(gift)

        assert len(posts) == 1

    def test_update_gift(self, tokens):
        def handler(request):
            assert request.method == "PATCH"
            assert request.url.path == "/gift/v1/gifts/g9"
            return httpx.Response(200)

        make_client(handler, tokens).update_gift("g9", Gift(amount=Decimal("1"), date="2025-03-01"))

    def test_error_status(self, tokens):
        client = make_client(lambda request: httpx.Response(400, text="bad fund"), tokens)

        with pytest.raises(BlackbaudAPIError) as exc_info:
            client.create_gift(Gift(amount=Decimal("1"), date="2025-03-01"))

        assert exc_info.value.status_code == 400
