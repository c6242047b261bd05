"""
Analytics Hook Registry
Holds the call-style dispatch hooks (gtag, fbq) that analytics sinks talk to,
and loads them with an event-or-timeout wait instead of polling
"""

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import httpx
import structlog

from storefront.middleware.correlation_id import get_correlation_id
from storefront.services.throttle import ThrottleGateway, throttled_fetch

logger = structlog.get_logger(__name__)

Hook = Callable[..., Any]
HookLoader = Callable[[], Awaitable[Optional[Hook]]]


class HookRegistry:
    """
    Named dispatch hooks plus their load state.

    ``wait_for`` resolves as soon as a hook is installed or its loader gives
    up, and at the latest after ``timeout``. It never raises.
    """

    def __init__(self):
        self._hooks: Dict[str, Hook] = {}
        self._settled: Dict[str, asyncio.Event] = {}
        self._loading: Dict[str, asyncio.Task] = {}

    def _event(self, name: str) -> asyncio.Event:
        if name not in self._settled:
            self._settled[name] = asyncio.Event()
        return self._settled[name]

    def is_present(self, name: str) -> bool:
        return name in self._hooks

    def get(self, name: str) -> Optional[Hook]:
        return self._hooks.get(name)

    def install(self, name: str, hook: Hook) -> None:
        self._hooks[name] = hook
        if name in self._settled:
            self._settled[name].set()
        logger.info("analytics_hook_installed", hook=name)

    def ensure_loading(self, name: str, loader: HookLoader) -> None:
        """Start ``loader`` unless the hook is present or already loading."""
        if self.is_present(name) or name in self._loading:
            return
        self._event(name)
        task = asyncio.ensure_future(self._load(name, loader))
        self._loading[name] = task

    async def _load(self, name: str, loader: HookLoader) -> None:
        try:
            hook = await loader()
            if hook is not None:
                self.install(name, hook)
        except Exception as e:
            logger.warning("analytics_hook_load_failed", hook=name, error=str(e))
        finally:
            self._loading.pop(name, None)
            self._event(name).set()

    async def wait_for(self, name: str, timeout: float) -> bool:
        """Wait until the hook is present, its load settles, or ``timeout`` passes."""
        if self.is_present(name):
            return True
        try:
            await asyncio.wait_for(self._event(name).wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.info("analytics_hook_wait_timeout", hook=name, timeout=timeout)
        return self.is_present(name)


class CollectorHook:
    """
    Call-style hook that forwards every call as JSON to a collector endpoint.

    Calls return immediately; delivery runs in the background through the
    throttle gateway and failures are only logged.
    """

    def __init__(self, name: str, url: str, gateway: Optional[ThrottleGateway] = None, timeout: float = 10.0):
        self.name = name
        self.url = url
        self.gateway = gateway
        self.timeout = timeout
        self._pending: Set[asyncio.Task] = set()

    def __call__(self, command: str, *args: Any) -> None:
        payload = {
            "hook": self.name,
            "command": command,
            "args": list(args),
            "sent_at": time.time(),
            "correlation_id": get_correlation_id(),
        }
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._send(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, payload: dict) -> None:
        body = json.dumps(payload, default=str)
        try:
            async with httpx.AsyncClient() as client:
                await throttled_fetch(
                    client,
                    "POST",
                    self.url,
                    gateway=self.gateway,
                    timeout=self.timeout,
                    content=body,
                    headers={"Content-Type": "application/json"},
                )
        except Exception as e:
            logger.debug("collector_hook_send_failed", hook=self.name, error=str(e))


def collector_loader(name: str, url: Optional[str], gateway: Optional[ThrottleGateway] = None) -> Optional[HookLoader]:
    """Loader that installs a CollectorHook, or None when no collector URL is configured."""
    if not url:
        return None

    async def load() -> Hook:
        return CollectorHook(name, url, gateway=gateway)

    return load
