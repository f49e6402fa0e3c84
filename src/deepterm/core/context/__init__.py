"""Global context aggregation and page/global context merging.

* ``ContextAggregator``: concurrent, failure-tolerant fan-out over the
  dashboard data API with a freshness cache and a single-flight guard.
* ``merge_context``: page-first precedence merge of a global snapshot
  into the page-driven ``ChatContext``.
* ``ContextHolder`` / ``GlobalContextUpdater``: versioned context and the
  background refresh loop.
"""

from .aggregator import ContextAggregator
from .merge import merge_context
from .models import (
    EMPTY_GLOBAL_STATE,
    ChatContext,
    ContextSnapshot,
    GlobalContextState,
)
from .sources import MarketDataClient
from .updater import ContextHolder, GlobalContextUpdater

__all__ = [
    "EMPTY_GLOBAL_STATE",
    "ChatContext",
    "ContextAggregator",
    "ContextHolder",
    "ContextSnapshot",
    "GlobalContextState",
    "GlobalContextUpdater",
    "MarketDataClient",
    "merge_context",
]
