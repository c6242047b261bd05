"""Tests for analytics sinks and the hook registry."""

import asyncio
import json

import httpx
import pytest

from storefront.services.tracking import hooks as hooks_module
from storefront.services.tracking import (
    CollectorHook,
    FacebookPixelSink,
    GoogleAdsSink,
    GoogleAnalyticsSink,
    HookRegistry,
    collector_loader,
)

PRODUCT = {"product_id": "sku_1", "product_name": "Kurta", "category": "apparel", "value": 899, "quantity": 2}


class TestTrackingIdValidation:

    @pytest.mark.parametrize("tracking_id,valid", [
        ("G-ABC12345", True),
        ("G-XXXXXXXXXX", False),
        ("AW-123", False),
        ("Not configured", False),
        (None, False),
    ])
    def test_google_analytics_ids(self, tracking_id, valid):
        assert GoogleAnalyticsSink(HookRegistry()).is_valid_id(tracking_id) is valid

    def test_google_ads_requires_aw_prefix(self):
        sink = GoogleAdsSink(HookRegistry())
        assert sink.is_valid_id("AW-123456789")
        assert not sink.is_valid_id("G-ABC12345")
        assert not sink.is_valid_id("AW-XXXXXXXXX")

    def test_facebook_requires_numeric_id(self):
        sink = FacebookPixelSink(HookRegistry())
        assert sink.is_valid_id("1234567890")
        assert not sink.is_valid_id("XXXXXXXXXXXXXXXXX")
        assert not sink.is_valid_id("12ab34cd")

    def test_invalid_id_leaves_sink_not_ready(self, registry, hooks):
        sink = GoogleAnalyticsSink(registry, tracking_id="G-XXXXXXXXXX")
        asyncio.run(sink.initialize())

        assert sink.is_ready() is False
        assert hooks["gtag"].calls == []


class TestInitialization:

    def test_gtag_configured_without_automatic_page_view(self, registry, hooks):
        sink = GoogleAnalyticsSink(registry, tracking_id="G-ABC12345")
        asyncio.run(sink.initialize())

        assert sink.is_ready()
        assert hooks["gtag"].calls[0][0] == "js"
        assert hooks["gtag"].calls[1] == ("config", "G-ABC12345", {"send_page_view": False})

    def test_facebook_init_sent_once(self, registry, hooks):
        sink = FacebookPixelSink(registry, tracking_id="1234567890")

        async def scenario():
            await sink.initialize()
            await sink.initialize()

        asyncio.run(scenario())
        assert hooks["fbq"].calls == [("init", "1234567890")]

    def test_loader_installs_hook(self, make_hook):
        registry = HookRegistry()
        hook = make_hook()

        async def loader():
            await asyncio.sleep(0.01)
            return hook

        sink = GoogleAnalyticsSink(registry, tracking_id="G-ABC12345", loader=loader, load_timeout=1.0)
        asyncio.run(sink.initialize())

        assert sink.is_ready()
        assert registry.get("gtag") is hook

    def test_failed_loader_settles_before_timeout(self):
        registry = HookRegistry()

        async def loader():
            raise ConnectionError("script blocked")

        sink = GoogleAnalyticsSink(registry, tracking_id="G-ABC12345", loader=loader, load_timeout=30.0)

        async def scenario():
            await asyncio.wait_for(sink.initialize(), timeout=1.0)

        asyncio.run(scenario())
        assert sink.is_ready() is False

    def test_wait_for_times_out_without_loader(self):
        registry = HookRegistry()
        assert asyncio.run(registry.wait_for("gtag", timeout=0.01)) is False

    def test_collector_loader_needs_url(self):
        assert collector_loader("gtag", None) is None
        assert collector_loader("gtag", "http://collector/gtag") is not None


class TestPayloads:

    def _ready(self, sink):
        sink.auto_fix()
        return sink

    def test_google_analytics_items_carry_price(self, registry, hooks):
        sink = self._ready(GoogleAnalyticsSink(registry, tracking_id="G-ABC12345"))
        sink.track_add_to_cart(PRODUCT)

        name, payload = hooks["gtag"].calls[0][1:]
        assert name == "add_to_cart"
        assert payload["send_to"] == "G-ABC12345"
        assert payload["currency"] == "INR"
        assert payload["items"][0]["price"] == 899
        assert payload["items"][0]["quantity"] == 2

    def test_google_ads_items_carry_value(self, registry, hooks):
        sink = self._ready(GoogleAdsSink(registry, tracking_id="AW-123456789"))
        sink.track_view_content(PRODUCT)

        payload = hooks["gtag"].calls[0][2]
        assert payload["items"][0]["value"] == 899
        assert "price" not in payload["items"][0]

    def test_google_ads_purchase_is_conversion(self, registry, hooks):
        sink = self._ready(GoogleAdsSink(registry, tracking_id="AW-123456789", conversion_id="AW-123456789/label"))
        sink.track_purchase({"transaction_id": "txn_1", "value": 100, "currency": "INR"})

        assert hooks["gtag"].calls == [("event", "conversion", {
            "send_to": "AW-123456789/label",
            "value": 100,
            "currency": "INR",
            "transaction_id": "txn_1",
        })]

    def test_google_ads_conversion_falls_back_to_account_id(self, registry, hooks):
        sink = self._ready(GoogleAdsSink(registry, tracking_id="AW-123456789", conversion_id="AW-123456789"))
        sink.track_purchase({"transaction_id": "txn_1", "value": 100})

        assert hooks["gtag"].calls[0][2]["send_to"] == "AW-123456789"

    def test_not_ready_gtag_sink_sends_nothing(self, registry, hooks):
        GoogleAnalyticsSink(registry, tracking_id="G-ABC12345").track_purchase({"value": 1})
        assert hooks["gtag"].calls == []

    def test_facebook_events_only_need_the_hook(self, registry, hooks):
        sink = FacebookPixelSink(registry, tracking_id="1234567890")
        sink.track_add_to_cart(PRODUCT)

        assert hooks["fbq"].calls[0][:2] == ("track", "AddToCart")
        assert hooks["fbq"].calls[0][2]["num_items"] == 2
        assert hooks["fbq"].calls[0][2]["content_ids"] == ["sku_1"]

    def test_facebook_purchase_marks_ready(self, registry, hooks):
        sink = FacebookPixelSink(registry, tracking_id="1234567890")
        sink.track_purchase({"value": 250, "items": [{"item_id": "sku_1", "quantity": 1, "price": 250}]})

        assert sink.is_ready()
        event, name, payload = hooks["fbq"].calls[0]
        assert (event, name) == ("track", "Purchase")
        assert payload["contents"] == [{"id": "sku_1", "quantity": 1, "item_price": 250}]
        assert payload["num_items"] == 1

    def test_facebook_purchase_initializes_lazily(self, make_hook):
        registry = HookRegistry()
        hook = make_hook()

        async def loader():
            return hook

        sink = FacebookPixelSink(registry, tracking_id="1234567890", loader=loader, load_timeout=1.0)

        async def scenario():
            sink.track_purchase({"value": 10})
            await asyncio.sleep(0.05)

        asyncio.run(scenario())
        assert hook.calls[0] == ("init", "1234567890")
        assert hook.calls[1][:2] == ("track", "Purchase")

    def test_facebook_forwards_only_standard_custom_events(self, registry, hooks):
        sink = self._ready(FacebookPixelSink(registry, tracking_id="1234567890"))
        sink.track_custom_event("Lead", {"value": 1})
        sink.track_custom_event("newsletter_popup", {})

        assert hooks["fbq"].calls == [("track", "Lead", {"value": 1})]

    def test_hook_failure_is_contained(self, registry, make_hook):
        registry.install("gtag", make_hook(fail=True))
        sink = self._ready(GoogleAnalyticsSink(registry, tracking_id="G-ABC12345"))

        sink.track_view_content(PRODUCT)
        assert sink.dispatch("view_item", {}) is False


class TestCollectorHook:

    def test_forwards_calls_as_json(self, monkeypatch, make_gateway):
        received = []
        real_client = httpx.AsyncClient

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(204)

        monkeypatch.setattr(hooks_module.httpx, "AsyncClient", lambda: real_client(transport=httpx.MockTransport(handler)))
        hook = CollectorHook("gtag", "http://collector/gtag", gateway=make_gateway())

        async def scenario():
            hook("event", "purchase", {"value": 10})
            await asyncio.sleep(0.05)

        asyncio.run(scenario())
        assert received[0]["hook"] == "gtag"
        assert received[0]["command"] == "event"
        assert received[0]["args"] == ["purchase", {"value": 10}]
        assert received[0]["correlation_id"] == "none"

    def test_delivery_failure_is_swallowed(self, monkeypatch, make_gateway):
        real_client = httpx.AsyncClient

        def handler(request):
            raise httpx.ConnectError("collector down", request=request)

        monkeypatch.setattr(hooks_module.httpx, "AsyncClient", lambda: real_client(transport=httpx.MockTransport(handler)))
        hook = CollectorHook("fbq", "http://collector/fbq", gateway=make_gateway())

        async def scenario():
            hook("track", "PageView")
            await asyncio.sleep(0.05)
            return hook._pending

        assert asyncio.run(scenario()) == set()
