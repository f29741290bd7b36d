"""
   Nhanh.vn（Warehouse）集成层专用异常类型。
   全部继承 UpstreamError，业务层只需按 retryable 决定是否重试。
"""

from synchub.core.errors import UpstreamError


class NhanhError(UpstreamError):
    """Base for all Nhanh errors."""

class NhanhAuthError(NhanhError):
    """appId / businessId / accessToken missing or rejected."""

class NhanhClientError(NhanhError):
    """Network/client-side errors after retries, or a non-retryable 4xx."""

class NhanhServerError(NhanhError):
    """Server-side (5xx) errors after retries."""

class NhanhRateLimitError(NhanhError):
    """429 Too Many Requests not resolved after retries."""

class NhanhPayloadError(NhanhError):
    """Non-JSON body, or a JSON envelope with code != 1."""
