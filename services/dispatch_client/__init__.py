"""Dashboard-side helpers for talking to the dispatch service."""

from .client import DispatchAPIClient, DispatchClientError
from .location import LocationReportThrottle
from .polling import BackoffPolicy, DashboardPoller, policy_for

__all__ = [
    "BackoffPolicy",
    "DashboardPoller",
    "DispatchAPIClient",
    "DispatchClientError",
    "LocationReportThrottle",
    "policy_for",
]
