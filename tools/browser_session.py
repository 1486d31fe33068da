"""
Browser session adapter - active page tracking and the liveness probe.

Concrete browser actions live with the host; the agent core only needs two
things from the browser:

  - which page is currently active (tab tools switch it), and
  - whether the debug session behind that page is still alive.

``PageProbe`` answers the second question by evaluating a trivial script on
the active page. It is duck-typed against Playwright's async ``Page`` (any
object with ``async evaluate(expression)`` works), so Playwright itself is
only needed by hosts that actually drive a browser.
"""

import logging
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)

LIVENESS_SCRIPT = "() => true"


class ActivePageTracker:
    """The page tools should act on, for one agent.

    Tab tools call ``set_current_page`` when they open or select a tab; every
    other tool resolves its page through ``get_current_page``.
    """

    def __init__(self, page: Any = None):
        self._page = page

    def set_current_page(self, page: Any) -> None:
        self._page = page

    def get_current_page(self, fallback: Any = None) -> Any:
        return self._page if self._page is not None else fallback

    def reset(self) -> None:
        self._page = None


class PageProbe:
    """Async callable returning True while the active page still responds.

    Accepts either a page object or an ``ActivePageTracker`` (so the probe
    follows tab switches). Never raises.
    """

    def __init__(self, target: Any):
        self._target = target

    def _page(self) -> Any:
        if isinstance(self._target, ActivePageTracker):
            return self._target.get_current_page()
        return self._target

    async def __call__(self) -> bool:
        page = self._page()
        if page is None:
            return False
        try:
            await page.evaluate(LIVENESS_SCRIPT)
            return True
        except Exception as e:
            logger.info("Page liveness check failed: %s", e)
            return False


async def always_healthy() -> bool:
    """Probe for runs without a browser attached (CLI, tests)."""
    return True


async def read_page_context(page: Any) -> Optional[Tuple[str, str]]:
    """``(url, title)`` of ``page``, or None when the page cannot be read."""
    if page is None:
        return None
    try:
        return page.url, await page.title()
    except Exception as e:
        logger.info("Could not read page context: %s", e)
        return None
