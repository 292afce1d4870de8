"""Service modules"""
from .alerts import LogNotifier, NotifierAlertDispatcher
from .locks import RemediationLocks
from .monitor import RiskMonitor, SweepResult
from .prices import StaticPriceSource
from .remediation import RemediationExecutor

__all__ = [
    "LogNotifier",
    "NotifierAlertDispatcher",
    "RemediationExecutor",
    "RemediationLocks",
    "RiskMonitor",
    "StaticPriceSource",
    "SweepResult",
]
