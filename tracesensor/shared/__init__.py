from __future__ import annotations

from .exceptions import (
    DeliveryFailedError,
    ResolutionFailedError,
    SensorConfigError,
    SensorException,
    SensorNetworkError,
    SensorRequestError,
    SensorTimeoutError,
    UnsupportedCarrierError,
)
from .requests import make_request, make_request_sync

__all__ = [
    "DeliveryFailedError",
    "ResolutionFailedError",
    "SensorConfigError",
    "SensorException",
    "SensorNetworkError",
    "SensorRequestError",
    "SensorTimeoutError",
    "UnsupportedCarrierError",
    "make_request",
    "make_request_sync",
]
