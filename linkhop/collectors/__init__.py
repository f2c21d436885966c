"""Click event collectors."""

from linkhop.collectors.click_collector import AnalyticsCollector, ClickSink, CollectorState

__all__ = [
    "AnalyticsCollector",
    "ClickSink",
    "CollectorState",
]
