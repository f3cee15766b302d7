"""Adaptive polling and the wallet watchers built on it."""

from arcle.monitoring.adaptive import (
    AdaptiveMonitor,
    MonitorHandle,
    PollConfig,
    PollingResult,
)
from arcle.monitoring.balance import BalanceMonitor
from arcle.monitoring.incoming import IncomingTransferMonitor

__all__ = [
    "AdaptiveMonitor",
    "BalanceMonitor",
    "IncomingTransferMonitor",
    "MonitorHandle",
    "PollConfig",
    "PollingResult",
]
