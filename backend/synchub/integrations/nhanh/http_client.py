"""
低层 HTTP 客户端：鉴权参数/限流/重试
  - Nhanh Open API 全部是 POST form：version/appId/businessId/accessToken + data(JSON 串)；
  - 基于 Redis 令牌桶限流（不可用时退回进程内节流）与指数退避（429/5xx/网络异常）；
  - 只认响应信封 {code, messages, data}，不关心业务字段结构。
"""

from __future__ import annotations
import json, logging, random, time
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import requests
import redis

from synchub.core.config import settings
from synchub.integrations.nhanh.errors import (
    NhanhAuthError, NhanhClientError, NhanhServerError, NhanhRateLimitError, NhanhPayloadError
)
from synchub.infrastructure.ratelimit import RedisTokenBucketLimiter, ProcessLocalPacer

logger = logging.getLogger(__name__)


class NhanhHttpClient:
    """Nhanh.vn Open API 的低层 HTTP 客户端：负责鉴权参数、限流与重试。"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        app_id: Optional[str] = None,
        business_id: Optional[str] = None,
        access_token: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
        rate_limit_per_min: Optional[int] = None,
        session: Optional[requests.Session] = None,
        limiter: Optional[RedisTokenBucketLimiter] = None,
        use_global_limiter: bool = True,
    ) -> None:
        token = settings.NHANH_ACCESS_TOKEN.get_secret_value() if settings.NHANH_ACCESS_TOKEN else None

        self.base_url = (base_url or settings.NHANH_BASE_URL).rstrip("/") + "/"
        self.app_id = app_id or settings.NHANH_APP_ID
        self.business_id = business_id or settings.NHANH_BUSINESS_ID
        self.access_token = access_token or token
        self.api_version = api_version or settings.NHANH_API_VERSION
        self.timeout = timeout or settings.NHANH_HTTP_TIMEOUT
        self.max_retries = settings.NHANH_HTTP_RETRIES if max_retries is None else max_retries
        self.rate_limit_per_min = rate_limit_per_min or settings.NHANH_RATE_LIMIT_PER_MIN

        self._session = session or requests.Session()
        self._pacer = ProcessLocalPacer(self.rate_limit_per_min)
        # 全局限流：同一个 businessId 的所有 worker 共用一个 Redis 令牌桶
        if limiter is not None or not use_global_limiter:
            self._global_limiter = limiter
        else:
            self._global_limiter = RedisTokenBucketLimiter.from_settings(
                vendor="nhanh", account=self.business_id, max_rpm=self.rate_limit_per_min,
            )


    # ---------- Public ----------
    def post_form(self, path: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """POST 一个 Open API 调用并返回信封里的 data 部分（code 必须为 1）。"""
        envelope = self._request(path, data)
        if not isinstance(envelope, dict):
            raise NhanhPayloadError(f"unexpected envelope type: {type(envelope).__name__}")

        if envelope.get("code") != 1:
            messages = envelope.get("messages")
            body = json.dumps(envelope, ensure_ascii=False)
            raise NhanhPayloadError(f"nhanh api error: {messages}", body=body, retryable=False)

        payload = envelope.get("data")
        return payload if isinstance(payload, dict) else {}

    def close(self) -> None:
        self._session.close()


    # ---------- Internals ----------
    def _form(self, data: Dict[str, Any]) -> Dict[str, str]:
        if not (self.app_id and self.business_id and self.access_token):
            raise NhanhAuthError("missing Nhanh credentials (NHANH_APP_ID / NHANH_BUSINESS_ID / NHANH_ACCESS_TOKEN)")
        return {
            "version": str(self.api_version),
            "appId": str(self.app_id),
            "businessId": str(self.business_id),
            "accessToken": str(self.access_token),
            "data": json.dumps(data, ensure_ascii=False),
        }

    def _as_json(self, resp: requests.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            text = resp.text or ""
            raise NhanhPayloadError(
                f"non-JSON response (status={resp.status_code})", status_code=resp.status_code, body=text[:500],
            ) from e

    def _request(self, path: str, data: Dict[str, Any]) -> Any:
        """执行一次底层 HTTP 调用，负责限流、重试与状态码处理。"""
        url = urljoin(self.base_url, path.lstrip("/"))
        form = self._form(data)
        headers = {"Accept": "application/json"}
        max_attempts = self.max_retries + 1

        for attempt in range(1, max_attempts + 1):
            self._respect_rate_limit()
            start = time.perf_counter()
            try:
                resp = self._session.post(url, data=form, headers=headers, timeout=self.timeout)
            except requests.RequestException as e:
                # 连接/超时等异常：指数退避
                logger.warning("nhanh.http.request_exception path=%s attempt=%s/%s err=%s",
                               path, attempt, max_attempts, type(e).__name__)
                if attempt == max_attempts:
                    raise NhanhClientError(f"request error: {e}", retryable=True) from e
                self._sleep_backoff(attempt)
                continue

            latency_ms = int((time.perf_counter() - start) * 1000)
            status = resp.status_code

            if status == 429:
                logger.warning("nhanh.http.429_throttled path=%s latency_ms=%s attempt=%s/%s",
                               path, latency_ms, attempt, max_attempts)
                if attempt == max_attempts:
                    raise NhanhRateLimitError("429 after retries", status_code=429, body=resp.text, retryable=True)
                self._sleep_backoff(attempt)
                continue

            if status >= 500:
                logger.warning("nhanh.http.server_error path=%s status=%s latency_ms=%s attempt=%s/%s",
                               path, status, latency_ms, attempt, max_attempts)
                if attempt == max_attempts:
                    raise NhanhServerError(f"{status} after retries", status_code=status, body=resp.text, retryable=True)
                self._sleep_backoff(attempt)
                continue

            if status in (401, 403):
                raise NhanhAuthError(f"{status} unauthorized", status_code=status, body=resp.text)

            if status >= 400:
                raise NhanhClientError(f"{status} client error", status_code=status, body=resp.text)

            logger.info("nhanh.http.ok path=%s status=%s latency_ms=%s attempt=%s", path, status, latency_ms, attempt)
            return self._as_json(resp)

        raise NhanhClientError("unreachable retry loop")


    # ---------- Helpers ----------
    def _respect_rate_limit(self) -> None:
        """优先使用 Redis 令牌桶限流；不可用时退回进程内节流。"""
        limiter = self._global_limiter
        if limiter is not None:
            try:
                for _ in range(20):
                    allowed, wait_ms = limiter.acquire_once()
                    if allowed:
                        return
                    time.sleep(max(0.001, (wait_ms or 1000) / 1000.0))
                # 20 次仍未拿到：退回进程内节流，让重试节奏接管
            except redis.RedisError as e:
                logger.warning("Global rate-limit disabled due to Redis error: %s; falling back to process-local.", e)
                self._global_limiter = None

        self._pacer.wait()

    # 指数退避：上限 30 秒，加上 0~25% 抖动。例：1s, 2s, 4s ...
    def _sleep_backoff(self, attempt: int) -> None:
        base = min(2 ** (attempt - 1), 30)
        jitter = random.uniform(0, 0.25 * base)
        time.sleep(base + jitter)
