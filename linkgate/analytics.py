"""Click tracking for resolved links.

Clicks are appended to a per-page sorted set ``analytics:<slug>`` scored by
timestamp. Recording is fire-and-forget: a failing store never affects the
resolution that triggered it.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

MAX_CLICKS_PER_PAGE = 1000


def analytics_key(slug: str) -> str:
    return f"analytics:{slug}"


class ClickTracker:
    def __init__(self, store: Any, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    def record_click(self, slug: str, link_id: str, is_gated: bool) -> None:
        timestamp = int(self.clock() * 1000)
        entry = json.dumps(
            {
                "itemId": link_id,
                "isGated": is_gated,
                "timestamp": timestamp,
                # Keeps members unique when two clicks land in the same millisecond
                "nonce": uuid.uuid4().hex[:8],
            }
        )
        try:
            key = analytics_key(slug)
            self.store.zadd(key, {entry: timestamp})
            self.store.zremrangebyrank(key, 0, -(MAX_CLICKS_PER_PAGE + 1))
        except Exception as e:
            logger.warning(f"Failed to record click for {slug}/{link_id}: {e}")

    def recent_clicks(self, slug: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent clicks first."""
        raw = self.store.zrange(analytics_key(slug), -limit, -1) if limit > 0 else []
        clicks = []
        for item in reversed(raw):
            data = json.loads(item)
            data.pop("nonce", None)
            clicks.append(data)
        return clicks
