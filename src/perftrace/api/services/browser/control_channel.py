"""Chrome DevTools Protocol control channel for one page."""

import asyncio
import logging
from typing import Any, Callable, Optional

from playwright.async_api import BrowserContext, CDPSession, Page

logger = logging.getLogger(__name__)

TRACE_CATEGORIES = [
    "devtools.timeline",
    "disabled-by-default-devtools.timeline",
    "disabled-by-default-devtools.timeline.frame",
    "toplevel",
    "blink",
    "blink.user_timing",
    "cc",
    "gpu",
    "v8.execute",
    "loading",
    "latencyInfo",
]

AnimationHandler = Callable[[dict[str, Any]], None]


class ControlChannel:
    """Thin async wrapper around a Playwright CDPSession.

    One channel is opened per page. The channel that started tracing must
    also be the one that ends it and reads the resulting stream.
    """

    def __init__(self, cdp: CDPSession):
        """Initialize the channel.

        Args:
            cdp: CDP session attached to a page
        """
        self._cdp = cdp
        self._animation_handler: Optional[AnimationHandler] = None
        self._tracing = False

    @classmethod
    async def open(cls, context: BrowserContext, page: Page) -> "ControlChannel":
        """Attach a new CDP session to ``page``."""
        cdp = await context.new_cdp_session(page)
        return cls(cdp)

    async def send(self, method: str, params: Optional[dict] = None) -> dict[str, Any]:
        return await self._cdp.send(method, params or {})

    # Performance counters

    async def enable_performance(self) -> None:
        await self.send("Performance.enable", {"timeDomain": "timeTicks"})

    async def get_metrics(self) -> dict[str, float]:
        """Read cumulative performance counters as a name -> value dict."""
        result = await self.send("Performance.getMetrics")
        return {m["name"]: m["value"] for m in result.get("metrics", []) if "name" in m}

    async def set_cpu_throttle(self, rate: float) -> None:
        await self.send("Emulation.setCPUThrottlingRate", {"rate": rate})
        logger.info(f"CPU throttling set to {rate}x")

    # Tracing

    async def start_tracing(self, categories: Optional[list[str]] = None) -> None:
        await self.send("Tracing.start", {
            "traceConfig": {
                "recordMode": "recordAsMuchAsPossible",
                "includedCategories": categories or TRACE_CATEGORIES,
            },
            "transferMode": "ReturnAsStream",
        })
        self._tracing = True

    async def end_tracing(self) -> Optional[str]:
        """Stop tracing and wait for the stream handle.

        Returns:
            IO stream handle, or None if tracing was never started
        """
        if not self._tracing:
            return None

        loop = asyncio.get_running_loop()
        complete: asyncio.Future = loop.create_future()

        def on_complete(params: dict) -> None:
            if not complete.done():
                complete.set_result(params.get("stream"))

        self._cdp.on("Tracing.tracingComplete", on_complete)
        try:
            await self.send("Tracing.end")
            return await complete
        finally:
            self._tracing = False
            self._cdp.remove_listener("Tracing.tracingComplete", on_complete)

    async def read_stream(self, handle: str) -> dict[str, Any]:
        return await self.send("IO.read", {"handle": handle})

    async def close_stream(self, handle: str) -> None:
        await self.send("IO.close", {"handle": handle})

    # Animations

    async def enable_animations(self, handler: AnimationHandler) -> bool:
        """Subscribe to Animation.animationStarted.

        Returns:
            False if the Animation domain is unavailable
        """
        try:
            await self.send("Animation.enable")
        except Exception as e:
            logger.warning(f"Animation domain unavailable: {e}")
            return False
        self._animation_handler = handler
        self._cdp.on("Animation.animationStarted", handler)
        return True

    def detach_handlers(self) -> None:
        """Stop delivering push notifications to registered handlers."""
        if self._animation_handler is not None:
            self._cdp.remove_listener("Animation.animationStarted", self._animation_handler)
            self._animation_handler = None

    async def close(self) -> None:
        self.detach_handlers()
        try:
            await self._cdp.detach()
        except Exception as e:
            logger.debug(f"CDP detach failed: {e}")
