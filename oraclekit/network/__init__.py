"""
Threshold network transports.
"""
from .transport import ExecutionResponse, ThresholdNetwork, get_transport
from .http_transport import HttpNetwork
from .local_transport import LocalActions, LocalNetwork, RunOnceRegistry

__all__ = [
    "ExecutionResponse",
    "ThresholdNetwork",
    "get_transport",
    "HttpNetwork",
    "LocalActions",
    "LocalNetwork",
    "RunOnceRegistry",
]
