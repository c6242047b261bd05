"""
Analytics Sinks
One adapter per conversion-tracking platform. Each adapter shapes payloads for
its platform and calls the platform's hook; it never builds transport itself.
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Set

from storefront.config import settings
from storefront.services.tracking.hooks import HookLoader, HookRegistry

logger = logging.getLogger(__name__)

PLACEHOLDER_IDS = {"Not configured", "G-XXXXXXXXXX", "AW-XXXXXXXXX", "XXXXXXXXXXXXXXXXX"}

FACEBOOK_STANDARD_EVENTS = [
    "Lead", "CompleteRegistration", "Contact", "CustomizeProduct",
    "Donate", "FindLocation", "Schedule", "Search", "StartTrial",
    "SubmitApplication", "Subscribe",
]


class AnalyticsSink(ABC):
    """
    Capability interface the orchestrator depends on:
    ``is_ready()``, ``auto_fix()``, ``initialize()``, ``dispatch(event, payload)``
    and one ``track_*`` method per commerce event.
    """

    name: str = "sink"
    hook_name: str = ""

    def __init__(
        self,
        registry: HookRegistry,
        tracking_id: Optional[str] = None,
        loader: Optional[HookLoader] = None,
        load_timeout: float = 8.0,
        currency: Optional[str] = None,
    ):
        self.registry = registry
        self.tracking_id = tracking_id
        self.loader = loader
        self.load_timeout = load_timeout
        self.currency = currency or settings.default_currency
        self.ready = False
        self.configured = False

    @abstractmethod
    def is_valid_id(self, tracking_id: Optional[str]) -> bool:
        ...

    @abstractmethod
    def _configure(self) -> None:
        """Send the platform's setup commands once the hook is present."""

    @abstractmethod
    def dispatch(self, event: str, payload: Dict[str, Any]) -> bool:
        ...

    def hook_present(self) -> bool:
        return self.registry.is_present(self.hook_name)

    def is_ready(self) -> bool:
        return self.ready

    async def initialize(self) -> None:
        """
        Load the hook and configure the platform. Never raises; an invalid id,
        a failed load or a timeout leave the sink not ready.
        """
        if not self.is_valid_id(self.tracking_id):
            logger.info(f"{self.name} not configured - skipping initialization")
            return

        if self.loader is not None:
            self.registry.ensure_loading(self.hook_name, self.loader)

        if not await self.registry.wait_for(self.hook_name, self.load_timeout):
            logger.warning(f"{self.name} hook unavailable after {self.load_timeout}s")
            return

        try:
            self._configure()
            self.ready = True
            self.configured = True
        except Exception as e:
            logger.warning(f"{self.name} configuration failed: {e}")

    def auto_fix(self) -> bool:
        """Mark the sink ready when its hook turned up after initialization gave up."""
        if self.hook_present() and not self.ready:
            self.ready = True
            self.configured = True
            return True
        return False

    def _call(self, *args: Any) -> bool:
        hook = self.registry.get(self.hook_name)
        if hook is None:
            return False
        try:
            hook(*args)
            return True
        except Exception as e:
            logger.debug(f"{self.name} hook call failed: {e}")
            return False

    def _can_track(self) -> bool:
        return self.ready and self.hook_present()

    @abstractmethod
    def track_page_view(self, page_data: Dict[str, Any]) -> None: ...

    @abstractmethod
    def track_view_content(self, product_data: Dict[str, Any]) -> None: ...

    @abstractmethod
    def track_add_to_cart(self, product_data: Dict[str, Any]) -> None: ...

    @abstractmethod
    def track_initiate_checkout(self, checkout_data: Dict[str, Any]) -> None: ...

    @abstractmethod
    def track_purchase(self, purchase_data: Dict[str, Any]) -> None: ...

    @abstractmethod
    def track_add_to_wishlist(self, product_data: Dict[str, Any]) -> None: ...

    @abstractmethod
    def track_search(self, search_data: Dict[str, Any]) -> None: ...

    @abstractmethod
    def track_custom_event(self, event_name: str, parameters: Dict[str, Any]) -> None: ...


class GtagSink(AnalyticsSink):
    """Shared gtag behaviour for Google Analytics and Google Ads."""

    hook_name = "gtag"
    id_prefix = ""
    item_price_key = "price"

    def is_valid_id(self, tracking_id: Optional[str]) -> bool:
        return bool(
            tracking_id
            and tracking_id not in PLACEHOLDER_IDS
            and tracking_id.startswith(self.id_prefix)
            and len(tracking_id) > 5
        )

    def _configure(self) -> None:
        hook = self.registry.get(self.hook_name)
        hook("js", datetime.now(timezone.utc).isoformat())
        hook("config", self.tracking_id, {"send_page_view": False})

    def dispatch(self, event: str, payload: Dict[str, Any]) -> bool:
        return self._call("event", event, {**payload, "send_to": self.tracking_id})

    def _single_item(self, product_data: Dict[str, Any], quantity: int = 1) -> Dict[str, Any]:
        return {
            "item_id": product_data.get("product_id"),
            "item_name": product_data.get("product_name"),
            "category": product_data.get("category"),
            "quantity": quantity,
            self.item_price_key: product_data.get("value"),
        }

    def _product_event(self, event: str, product_data: Dict[str, Any], quantity: int = 1) -> None:
        if not self._can_track():
            return
        self.dispatch(event, {
            "currency": product_data.get("currency", self.currency),
            "value": product_data.get("value"),
            "event_category": "ecommerce",
            "items": [self._single_item(product_data, quantity)],
        })

    def track_page_view(self, page_data: Dict[str, Any]) -> None:
        if not self._can_track() or not self.configured:
            return
        self.dispatch("page_view", {
            "page_title": page_data.get("page_title"),
            "page_location": page_data.get("page_location"),
            "page_path": page_data.get("page_path"),
        })

    def track_view_content(self, product_data: Dict[str, Any]) -> None:
        self._product_event("view_item", product_data)

    def track_add_to_cart(self, product_data: Dict[str, Any]) -> None:
        self._product_event("add_to_cart", product_data, quantity=product_data.get("quantity", 1))

    def track_add_to_wishlist(self, product_data: Dict[str, Any]) -> None:
        self._product_event("add_to_wishlist", product_data)

    def track_custom_event(self, event_name: str, parameters: Dict[str, Any]) -> None:
        if not self._can_track():
            return
        self.dispatch(event_name, parameters)


class GoogleAnalyticsSink(GtagSink):
    """GA4 events over gtag."""

    name = "google_analytics"
    id_prefix = "G-"
    item_price_key = "price"

    def track_initiate_checkout(self, checkout_data: Dict[str, Any]) -> None:
        if not self._can_track():
            return
        self.dispatch("begin_checkout", {
            "currency": checkout_data.get("currency", self.currency),
            "value": checkout_data.get("value"),
            "event_category": "ecommerce",
            "items": checkout_data.get("items", []),
        })

    def track_purchase(self, purchase_data: Dict[str, Any]) -> None:
        if not self._can_track():
            return
        self.dispatch("purchase", {
            "transaction_id": purchase_data.get("transaction_id"),
            "value": purchase_data.get("value"),
            "currency": purchase_data.get("currency", self.currency),
            "tax": purchase_data.get("tax", 0),
            "shipping": purchase_data.get("shipping", 0),
            "event_category": "ecommerce",
            "items": purchase_data.get("items", []),
        })

    def track_search(self, search_data: Dict[str, Any]) -> None:
        if not self._can_track():
            return
        self.dispatch("search", {
            "search_term": search_data.get("search_term"),
            "event_category": "engagement",
            "custom_parameters": {"number_of_results": search_data.get("number_of_results", 0)},
        })


class GoogleAdsSink(GtagSink):
    """Google Ads conversions and remarketing over gtag. Items carry ``value`` rather than ``price``."""

    name = "google_ads"
    id_prefix = "AW-"
    item_price_key = "value"

    def __init__(self, *args, conversion_id: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.conversion_id = conversion_id

    def track_initiate_checkout(self, checkout_data: Dict[str, Any]) -> None:
        if not self._can_track():
            return
        items = [
            {
                "item_id": item.get("item_id") or item.get("id"),
                "item_name": item.get("item_name") or item.get("name"),
                "category": item.get("item_category") or item.get("category"),
                "quantity": item.get("quantity") or 1,
                "value": item.get("price") or item.get("value") or 0,
            }
            for item in checkout_data.get("items", [])
        ]
        self.dispatch("begin_checkout", {
            "currency": checkout_data.get("currency", self.currency),
            "value": checkout_data.get("value"),
            "event_category": "ecommerce",
            "items": items,
            "custom_parameters": {
                "checkout_step": 1,
                "checkout_option": "initiate",
                "item_count": len(items),
                "platform": "web",
            },
        })

    def track_purchase(self, purchase_data: Dict[str, Any]) -> None:
        if not self._can_track():
            return
        # A full conversion id looks like AW-123/label; fall back to the account id
        send_to = self.conversion_id if self.conversion_id and "/" in self.conversion_id else self.tracking_id
        self._call("event", "conversion", {
            "send_to": send_to,
            "value": purchase_data.get("value"),
            "currency": purchase_data.get("currency", self.currency),
            "transaction_id": purchase_data.get("transaction_id"),
        })

    def track_search(self, search_data: Dict[str, Any]) -> None:
        if not self._can_track():
            return
        self.dispatch("search", {
            "search_term": search_data.get("search_term"),
            "event_category": "engagement",
            "custom_parameters": {
                "number_of_results": search_data.get("number_of_results", 0),
                "platform": "web",
            },
        })


class FacebookPixelSink(AnalyticsSink):
    """Facebook Pixel standard events over fbq."""

    name = "facebook_pixel"
    hook_name = "fbq"

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("load_timeout", settings.fbq_load_timeout_seconds)
        super().__init__(*args, **kwargs)
        self.initialized = False
        self._pending: Set[asyncio.Task] = set()

    def is_valid_id(self, tracking_id: Optional[str]) -> bool:
        return bool(
            tracking_id
            and tracking_id not in PLACEHOLDER_IDS
            and re.fullmatch(r"\d+", tracking_id)
            and len(tracking_id) > 5
        )

    def _configure(self) -> None:
        if not self.initialized:
            self.registry.get(self.hook_name)("init", self.tracking_id)
            self.initialized = True

    def dispatch(self, event: str, payload: Dict[str, Any]) -> bool:
        return self._call("track", event, payload)

    def _hook_or_ready(self) -> bool:
        return self.ready or self.hook_present()

    def _content_payload(self, product_data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "content_ids": [product_data.get("product_id")],
            "content_name": product_data.get("product_name"),
            "content_category": product_data.get("category"),
            "content_type": "product",
            "value": product_data.get("value"),
            "currency": product_data.get("currency", self.currency),
        }

    def track_page_view(self, page_data: Dict[str, Any]) -> None:
        if not self._can_track():
            return
        self._call("track", "PageView")

    def track_view_content(self, product_data: Dict[str, Any]) -> None:
        if not self._hook_or_ready():
            return
        self.dispatch("ViewContent", self._content_payload(product_data))

    def track_add_to_cart(self, product_data: Dict[str, Any]) -> None:
        if not self._hook_or_ready():
            return
        payload = self._content_payload(product_data)
        payload["num_items"] = product_data.get("quantity", 1)
        self.dispatch("AddToCart", payload)

    def track_initiate_checkout(self, checkout_data: Dict[str, Any]) -> None:
        if not self._hook_or_ready():
            return
        items: List[Dict[str, Any]] = checkout_data.get("items", [])
        self.dispatch("InitiateCheckout", {
            "content_ids": [item.get("item_id") for item in items],
            "contents": [{"id": item.get("item_id"), "quantity": item.get("quantity")} for item in items],
            "content_type": "product",
            "value": checkout_data.get("value"),
            "currency": checkout_data.get("currency", self.currency),
            "num_items": len(items),
        })

    def track_purchase(self, purchase_data: Dict[str, Any]) -> None:
        # Purchases fire whenever the hook exists, ready or not
        if not self.hook_present():
            try:
                task = asyncio.get_running_loop().create_task(self._initialize_then_purchase(purchase_data))
            except RuntimeError:
                logger.debug("facebook_pixel purchase dropped: hook missing and no event loop")
                return
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return

        self._fire_purchase(purchase_data)

    async def _initialize_then_purchase(self, purchase_data: Dict[str, Any]) -> None:
        try:
            await self.initialize()
        except Exception as e:
            logger.debug(f"facebook_pixel lazy initialization failed: {e}")
            return
        if self.hook_present():
            self._fire_purchase(purchase_data)

    def _fire_purchase(self, purchase_data: Dict[str, Any]) -> None:
        items: List[Dict[str, Any]] = purchase_data.get("items", [])
        sent = self.dispatch("Purchase", {
            "content_ids": [item.get("item_id") for item in items],
            "contents": [
                {"id": item.get("item_id"), "quantity": item.get("quantity"), "item_price": item.get("price")}
                for item in items
            ],
            "content_type": "product",
            "value": purchase_data.get("value"),
            "currency": purchase_data.get("currency", self.currency),
            "num_items": len(items),
        })
        if sent and not self.ready:
            self.ready = True

    def track_add_to_wishlist(self, product_data: Dict[str, Any]) -> None:
        if not self._can_track():
            return
        self.dispatch("AddToWishlist", self._content_payload(product_data))

    def track_search(self, search_data: Dict[str, Any]) -> None:
        if not self._can_track():
            return
        self.dispatch("Search", {"content_type": "product", "search_string": search_data.get("search_term")})

    def track_custom_event(self, event_name: str, parameters: Dict[str, Any]) -> None:
        if not self._can_track():
            return
        if event_name in FACEBOOK_STANDARD_EVENTS:
            self.dispatch(event_name, parameters)
