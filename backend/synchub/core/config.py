# 环境变量和配置
# pydantic-settings 读取 .env = core/config.py

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Dict, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


# 本机直接跑 uvicorn / celery 时读取 backend/.env；容器里直接走环境变量

class Settings(BaseSettings):

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_prefix="",
        case_sensitive=False,
    )

    # ========= project config =========
    PROJECT_NAME: str = "Sync Hub"
    ENVIRONMENT: str = "dev"
    API_PREFIX: str = "/api/v1"

    # ========= 鉴权（只校验 token，不签发） =========
    SECRET_KEY: SecretStr = Field(SecretStr("CHANGE_ME"), alias="SECRET_KEY")
    JWT_ALGORITHM: str = Field("HS256", alias="JWT_ALGORITHM")
    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"

    # ========= Database =========
    DATABASE_URL: str = Field(
        default="postgresql+psycopg://sync_user:sync_pass@db:5432/synchub_dev",
        alias="DATABASE_URL",
    )

    # ========= celery config =========
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None
    CELERY_TIMEZONE: str = "Asia/Ho_Chi_Minh"
    SYNC_TASKS_INLINE: bool = Field(default=False, alias="SYNC_TASKS_INLINE")     # True=进程内线程池执行，不走 broker
    SYNC_WORKER_CONCURRENCY: int = Field(default=5, ge=1, le=64, alias="SYNC_WORKER_CONCURRENCY")
    SYNC_SWEEP_INTERVAL_SEC: int = Field(default=60, ge=10, alias="SYNC_SWEEP_INTERVAL_SEC")
    SYNC_SWEEP_LIMIT: int = Field(default=200, ge=1, alias="SYNC_SWEEP_LIMIT")

    # ========= Shopify (Store) =========
    SHOPIFY_SHOP: str = Field("example.myshopify.com", alias="SHOPIFY_SHOP")
    SHOPIFY_ADMIN_TOKEN: Optional[SecretStr] = Field(None, alias="SHOPIFY_ADMIN_TOKEN")
    SHOPIFY_API_VERSION: str = Field("2024-01", alias="SHOPIFY_API_VERSION")
    SHOPIFY_LOCATION_ID: Optional[str] = Field(None, alias="SHOPIFY_LOCATION_ID")
    SHOPIFY_HTTP_TIMEOUT: int = Field(30, ge=1, alias="SHOPIFY_HTTP_TIMEOUT")
    SHOPIFY_HTTP_RETRIES: int = Field(2, ge=0, alias="SHOPIFY_HTTP_RETRIES")
    SHOPIFY_HTTP_BACKOFF_MS: int = Field(500, ge=50, alias="SHOPIFY_HTTP_BACKOFF_MS")

    # ========= Nhanh (Warehouse) =========
    NHANH_BASE_URL: str = Field("https://open.nhanh.vn", alias="NHANH_BASE_URL")
    NHANH_API_VERSION: str = Field("2.0", alias="NHANH_API_VERSION")
    NHANH_APP_ID: Optional[str] = Field(None, alias="NHANH_APP_ID")
    NHANH_BUSINESS_ID: Optional[str] = Field(None, alias="NHANH_BUSINESS_ID")
    NHANH_ACCESS_TOKEN: Optional[SecretStr] = Field(None, alias="NHANH_ACCESS_TOKEN")
    NHANH_HTTP_TIMEOUT: int = Field(30, ge=1, alias="NHANH_HTTP_TIMEOUT")
    NHANH_HTTP_RETRIES: int = Field(2, ge=0, alias="NHANH_HTTP_RETRIES")
    NHANH_RATE_LIMIT_PER_MIN: int = Field(150, ge=1, le=600, alias="NHANH_RATE_LIMIT_PER_MIN")

    # ========= 全局限流 =========
    RATE_LIMIT_ENABLED: bool = Field(True, alias="RATE_LIMIT_ENABLED")
    RATE_LIMIT_REDIS_URL: str = Field("redis://redis:6379/0", alias="RATE_LIMIT_REDIS_URL")
    RATE_LIMIT_BURST: int = Field(5, ge=1, alias="RATE_LIMIT_BURST")
    RATE_LIMIT_KEY_PREFIX: str = Field("synchub:rl", alias="RATE_LIMIT_KEY_PREFIX")

    # ========= 同步策略 =========
    SYNC_MAX_ATTEMPTS: int = Field(3, ge=1, alias="SYNC_MAX_ATTEMPTS")
    SYNC_BACKOFF_BASE_SEC: int = Field(5, ge=1, alias="SYNC_BACKOFF_BASE_SEC")           # 5s, 10s, 20s ...
    SYNC_BACKOFF_MAX_SEC: int = Field(600, ge=1, alias="SYNC_BACKOFF_MAX_SEC")
    SYNC_VISIBILITY_TIMEOUT_SEC: int = Field(900, ge=60, alias="SYNC_VISIBILITY_TIMEOUT_SEC")   # active 卡住多久算 worker 丢失
    SYNC_DEDUP_WINDOW_SEC: int = Field(60, ge=0, alias="SYNC_DEDUP_WINDOW_SEC")
    SYNC_ERROR_SNIPPET_CHARS: int = Field(100, ge=10, alias="SYNC_ERROR_SNIPPET_CHARS")
    SYNC_STRICT_WAREHOUSE_MATCH: bool = Field(False, alias="SYNC_STRICT_WAREHOUSE_MATCH")
    # Store location -> Warehouse depot，JSON 串，例如 {"gid-or-id": "175080"}
    SYNC_DEPOT_MAP: str = Field("{}", alias="SYNC_DEPOT_MAP")
    SYNC_ACTOR: str = Field("system", alias="SYNC_ACTOR")

    # ========= 新品发现 =========
    DISCOVERY_LOOKBACK_DAYS: int = Field(7, ge=1, alias="DISCOVERY_LOOKBACK_DAYS")
    DISCOVERY_VENDOR: str = Field("Nhanh.vn", alias="DISCOVERY_VENDOR")
    DISCOVERY_PAGE_LIMIT: int = Field(100, ge=1, le=100, alias="DISCOVERY_PAGE_LIMIT")
    DISCOVERY_MAX_PAGES: int = Field(20, ge=1, alias="DISCOVERY_MAX_PAGES")
    DISCOVERY_INTERVAL_SEC: int = Field(6 * 3600, ge=60, alias="DISCOVERY_INTERVAL_SEC")


settings = Settings()  # 只从环境读取（含 .env）


"""
  注入到 worker / 协调器 / 发现器的同步配置
  - 构造时一次性读取，业务代码不再直接碰全局 settings
"""
@dataclass(frozen=True)
class SyncConfig:
    default_location_id: Optional[str] = None
    max_attempts: int = 3
    backoff_base_sec: int = 5
    backoff_max_sec: int = 600
    visibility_timeout_sec: int = 900
    dedup_window_sec: int = 60
    error_snippet_chars: int = 100
    strict_warehouse_match: bool = False
    depot_map: Dict[str, str] = field(default_factory=dict)
    actor: str = "system"
    discovery_lookback_days: int = 7
    discovery_vendor: str = "Nhanh.vn"

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "SyncConfig":
        return cls(
            default_location_id=s.SHOPIFY_LOCATION_ID,
            max_attempts=s.SYNC_MAX_ATTEMPTS,
            backoff_base_sec=s.SYNC_BACKOFF_BASE_SEC,
            backoff_max_sec=s.SYNC_BACKOFF_MAX_SEC,
            visibility_timeout_sec=s.SYNC_VISIBILITY_TIMEOUT_SEC,
            dedup_window_sec=s.SYNC_DEDUP_WINDOW_SEC,
            error_snippet_chars=s.SYNC_ERROR_SNIPPET_CHARS,
            strict_warehouse_match=s.SYNC_STRICT_WAREHOUSE_MATCH,
            depot_map=_parse_depot_map(s.SYNC_DEPOT_MAP),
            actor=s.SYNC_ACTOR,
            discovery_lookback_days=s.DISCOVERY_LOOKBACK_DAYS,
            discovery_vendor=s.DISCOVERY_VENDOR,
        )

    def depot_for(self, location_id: str) -> str:
        """Store location 对应的 Warehouse depot；未配置时假定两边 id 相同。"""
        return str(self.depot_map.get(str(location_id), location_id))


def _parse_depot_map(raw: str) -> Dict[str, str]:
    if not raw or not raw.strip():
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("SYNC_DEPOT_MAP must be a JSON object")
    return {str(k): str(v) for k, v in data.items()}
