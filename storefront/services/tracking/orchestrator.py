"""
Conversion Tracking Orchestrator
Fans each commerce event out to every analytics sink, with per-event
deduplication and a durable idempotency cache for purchases
"""

import asyncio
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import structlog

from storefront.config import settings
from storefront.services.storage.storage_service import StorageService
from storefront.services.throttle import ThrottleGateway
from storefront.services.tracking.sinks import AnalyticsSink

logger = structlog.get_logger(__name__)

TRACKED_PURCHASES_KEY = "tracked_purchases"

_TXN_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class ClientState:
    """Dedup memory for one browser session."""

    last_page_view: Dict[str, Any] = field(default_factory=lambda: {"path": None, "timestamp": 0.0})
    last_product_views: Dict[str, float] = field(default_factory=dict)
    last_cart_actions: Dict[str, float] = field(default_factory=dict)
    last_seen: float = 0.0


def _is_timestamp(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def generate_transaction_id(now: Optional[float] = None) -> str:
    """Fallback transaction id: txn_{epoch_ms}_{9 random chars}."""
    millis = int((now if now is not None else time.time()) * 1000)
    suffix = "".join(secrets.choice(_TXN_ALPHABET) for _ in range(9))
    return f"txn_{millis}_{suffix}"


class TrackingOrchestrator:
    """
    Single call-site API for conversion tracking.

    Dedup windows, kept separately for each ``session_id``:
    - page views: same path within ``page_view_window`` seconds
    - product views / add-to-cart: same key within their windows (in memory)
    - purchases: same transaction id within ``purchase_window`` seconds,
      recorded in the session's store and pruned after ``purchase_retention``

    Calls without a ``session_id`` share one anonymous state.

    Every ``track_*`` method returns True when the event was forwarded and
    False when dedup dropped it. Sink failures never reach the caller.
    """

    def __init__(
        self,
        sinks: List[AnalyticsSink],
        gateway: ThrottleGateway,
        purchase_store: StorageService,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        init_timeout: Optional[float] = None,
        page_view_window: Optional[float] = None,
        page_view_batch_delay: Optional[float] = None,
        view_content_window: Optional[float] = None,
        add_to_cart_window: Optional[float] = None,
        purchase_window: Optional[float] = None,
        purchase_retention: Optional[float] = None,
    ):
        self.sinks = sinks
        self.gateway = gateway
        self.purchase_store = purchase_store
        self.clock = clock
        self.wall_clock = wall_clock

        self.init_timeout = _or_default(init_timeout, settings.tracking_init_timeout_seconds)
        self.page_view_window = _or_default(page_view_window, settings.page_view_dedup_seconds)
        self.page_view_batch_delay = _or_default(page_view_batch_delay, settings.page_view_batch_seconds)
        self.view_content_window = _or_default(view_content_window, settings.view_content_dedup_seconds)
        self.add_to_cart_window = _or_default(add_to_cart_window, settings.add_to_cart_dedup_seconds)
        self.purchase_window = _or_default(purchase_window, settings.purchase_dedup_seconds)
        self.purchase_retention = _or_default(purchase_retention, settings.purchase_retention_seconds)

        self.is_initialized = False
        self._init_task: Optional[asyncio.Future] = None
        self._clients: Dict[Optional[str], ClientState] = {}
        self.logger = logger.bind(service="tracking_orchestrator")

    # Initialization

    async def initialize(self) -> None:
        """Initialize every sink once. Concurrent callers share the same run."""
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize_with_timeout())
        await asyncio.shield(self._init_task)

    async def _initialize_with_timeout(self) -> None:
        try:
            await asyncio.wait_for(self._initialize_sinks(), timeout=self.init_timeout)
        except asyncio.TimeoutError:
            self.logger.error("tracking_init_timeout", timeout=self.init_timeout)
        except Exception as e:
            self.logger.error("tracking_init_failed", error=str(e))
        finally:
            # Marked initialized even on failure so callers never wait again
            self.is_initialized = True

    async def _initialize_sinks(self) -> None:
        results = await asyncio.gather(
            *(sink.initialize() for sink in self.sinks),
            return_exceptions=True
        )
        for sink, result in zip(self.sinks, results):
            if isinstance(result, BaseException):
                self.logger.warning("sink_init_failed", sink=sink.name, error=str(result))
        self.logger.info("tracking_initialized", status=self.get_status())

    def is_ready(self) -> bool:
        return self.is_initialized and any(sink.is_ready() for sink in self.sinks)

    async def ensure_ready(self) -> bool:
        if not self.is_initialized:
            await self.initialize()
        return self.is_ready()

    def get_status(self) -> Dict[str, bool]:
        status = {"initialized": self.is_initialized}
        for sink in self.sinks:
            status[sink.name] = sink.is_ready()
        return status

    # Dispatch helpers

    def _auto_fix_ready_flags(self) -> None:
        fixed = [sink.name for sink in self.sinks if sink.auto_fix()]
        if not self.is_initialized and any(sink.is_ready() for sink in self.sinks):
            self.is_initialized = True
            fixed.append("orchestrator")
        if fixed:
            self.logger.info("tracking_ready_flags_fixed", fixed=fixed)

    def _fan_out(self, method: str, *args: Any) -> None:
        for sink in self.sinks:
            try:
                getattr(sink, method)(*args)
            except Exception as e:
                self.logger.debug("sink_dispatch_failed", sink=sink.name, method=method, error=str(e))

    def _client(self, session_id: Optional[str]) -> ClientState:
        """Dedup state for ``session_id``; idle sessions are evicted."""
        now = self.clock()
        idle_after = max(self.page_view_window, self.view_content_window, self.add_to_cart_window)
        for stale in [sid for sid, state in self._clients.items() if now - state.last_seen >= idle_after]:
            del self._clients[stale]

        state = self._clients.get(session_id)
        if state is None:
            state = self._clients[session_id] = ClientState()
        state.last_seen = now
        return state

    def _purchase_store_for(self, session_id: Optional[str]) -> StorageService:
        if session_id is None:
            return self.purchase_store
        return self.purchase_store.scoped(session_id)

    def _seen_recently(self, entries: Dict[str, float], key: str, window: float) -> bool:
        """Evict expired entries, then check and record ``key``."""
        now = self.clock()
        for stale in [k for k, ts in entries.items() if now - ts >= window]:
            del entries[stale]
        if key in entries:
            return True
        entries[key] = now
        return False

    # Events

    def track_page_view(
        self, page_data: Optional[Dict[str, Any]] = None, session_id: Optional[str] = None
    ) -> bool:
        page_data = dict(page_data or {})
        path = page_data.get("page_path") or "/"
        page_data["page_path"] = path
        client = self._client(session_id)
        now = self.clock()

        last = client.last_page_view
        if last["path"] == path and now - last["timestamp"] < self.page_view_window:
            self.logger.debug("page_view_skipped_duplicate", path=path)
            return False

        client.last_page_view = {"path": path, "timestamp": now}
        batch_key = f"pageview:{session_id}:{path}" if session_id else f"pageview:{path}"

        async def dispatch():
            self._fan_out("track_page_view", page_data)

        try:
            self.gateway.batch(dispatch, batch_key, self.page_view_batch_delay)
        except RuntimeError:
            # No running loop to debounce on
            self._fan_out("track_page_view", page_data)
        return True

    def track_view_content(self, product_data: Dict[str, Any], session_id: Optional[str] = None) -> bool:
        key = f"view_item_{product_data.get('product_id')}"
        client = self._client(session_id)
        if self._seen_recently(client.last_product_views, key, self.view_content_window):
            self.logger.debug("view_content_skipped_duplicate", key=key)
            return False

        self._auto_fix_ready_flags()
        self._fan_out("track_view_content", product_data)
        return True

    def track_add_to_cart(self, product_data: Dict[str, Any], session_id: Optional[str] = None) -> bool:
        quantity = product_data.get("quantity", 1)
        key = f"add_to_cart_{product_data.get('product_id')}_{quantity}"
        client = self._client(session_id)
        if self._seen_recently(client.last_cart_actions, key, self.add_to_cart_window):
            self.logger.debug("add_to_cart_skipped_duplicate", key=key)
            return False

        self._auto_fix_ready_flags()
        self._fan_out("track_add_to_cart", product_data)
        return True

    def track_initiate_checkout(self, checkout_data: Dict[str, Any], session_id: Optional[str] = None) -> bool:
        self._auto_fix_ready_flags()
        self._fan_out("track_initiate_checkout", checkout_data)
        return True

    def _load_tracked_purchases(self, store: StorageService, now: float) -> Dict[str, dict]:
        """Cached purchases still within retention; malformed entries are dropped."""
        tracked = store.get(TRACKED_PURCHASES_KEY)
        if not isinstance(tracked, dict):
            return {}
        return {
            txn_id: entry
            for txn_id, entry in tracked.items()
            if isinstance(entry, dict)
            and _is_timestamp(entry.get("timestamp"))
            and now - entry["timestamp"] <= self.purchase_retention
        }

    def track_purchase(self, purchase_data: Dict[str, Any], session_id: Optional[str] = None) -> bool:
        """
        Forward a purchase at most once per ``purchase_window``.

        The transaction is recorded before any sink is called; check and
        record happen with no suspension point in between.
        """
        now = self.wall_clock()
        transaction_id = purchase_data.get("transaction_id") or generate_transaction_id(now)
        log = self.logger.bind(transaction_id=transaction_id)

        store = self._purchase_store_for(session_id)
        tracked = self._load_tracked_purchases(store, now)
        previous = tracked.get(transaction_id)
        if previous and now - previous["timestamp"] < self.purchase_window:
            log.info("purchase_skipped_duplicate", tracked_at=previous["timestamp"])
            return False

        tracked[transaction_id] = {
            "value": purchase_data.get("value"),
            "currency": purchase_data.get("currency"),
            "timestamp": now,
            "items": len(purchase_data.get("items") or []),
        }
        if not store.set(TRACKED_PURCHASES_KEY, tracked):
            log.warning("purchase_cache_write_failed")

        self._auto_fix_ready_flags()
        final_data = {**purchase_data, "transaction_id": transaction_id}
        self._fan_out("track_purchase", final_data)
        log.info("purchase_tracked", value=purchase_data.get("value"))
        return True

    def track_add_to_wishlist(self, product_data: Dict[str, Any], session_id: Optional[str] = None) -> bool:
        self._auto_fix_ready_flags()
        self._fan_out("track_add_to_wishlist", product_data)
        return True

    def track_search(self, search_data: Dict[str, Any], session_id: Optional[str] = None) -> bool:
        self._auto_fix_ready_flags()
        self._fan_out("track_search", search_data)
        return True

    def track_custom_event(
        self,
        event_name: str,
        parameters: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> bool:
        parameters = parameters or {}
        enhanced = {**parameters, "event_category": parameters.get("event_category") or "custom"}
        self._fan_out("track_custom_event", event_name, enhanced)
        return True


def _or_default(value: Optional[float], default: float) -> float:
    return default if value is None else value
