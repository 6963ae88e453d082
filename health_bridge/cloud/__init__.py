"""Huawei Health Kit cloud API access (bearer-token authenticated)."""

from health_bridge.cloud.client import (
    DATA_TYPE_NAMES,
    READ_SCOPES,
    CloudApiError,
    CloudDataClient,
)
from health_bridge.cloud.models import PrivacyAuthStatus, UserConsentInfo

__all__ = [
    "CloudApiError",
    "CloudDataClient",
    "DATA_TYPE_NAMES",
    "PrivacyAuthStatus",
    "READ_SCOPES",
    "UserConsentInfo",
]
