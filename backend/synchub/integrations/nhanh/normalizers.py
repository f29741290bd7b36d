"""
领域映射（纯函数）：把 Nhanh 返回的商品字典转换为内部规范类型。
  - Price / StockLevel 是唯一的内部表示，工作器只认这两个类型；
  - 不符合任何已知形状的输入一律抛 ValidationError，不做猜测。
"""
from __future__ import annotations
import json
import logging
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple

from synchub.core.errors import ValidationError

logger = logging.getLogger(__name__)

# 快照里仓库 id 的字段名，按优先级
WAREHOUSE_ID_FIELDS = ("idNhanh", "id")

# 商品解析结果的来源标记，写进事件 details
RESOLUTION_EXACT = "exact"
RESOLUTION_ALTERNATE = "alternate_id"
RESOLUTION_FALLBACK = "fallback_first"


@dataclass(frozen=True)
class Price:
    amount: Decimal
    source: str           # price / prices.web / prices.default

    def as_store_string(self) -> str:
        # 150000 -> "150000"，1.50 -> "1.5"，不出现科学计数法
        return format(self.amount.normalize(), "f")


@dataclass(frozen=True)
class StockLevel:
    quantity: int
    source: str           # remain / depot:<id>
    depot_id: Optional[str] = None


# ---------- 快照 ----------
def load_snapshot(snapshot: Any) -> Optional[Dict[str, Any]]:
    """快照可能是 dict 或历史遗留的 JSON 字符串；解析不了返回 None。"""
    if snapshot is None:
        return None
    if isinstance(snapshot, dict):
        return snapshot
    if isinstance(snapshot, (str, bytes)):
        try:
            data = json.loads(snapshot)
        except ValueError:
            return None
        return data if isinstance(data, dict) else None
    return None


def extract_warehouse_id(snapshot: Any) -> Optional[str]:
    """从快照里取仓库商品 id（idNhanh 优先，其次 id）；缺失/解析失败返回 None。"""
    data = load_snapshot(snapshot)
    if not data:
        return None
    for key in WAREHOUSE_ID_FIELDS:
        v = data.get(key)
        if v is not None and str(v).strip():
            return str(v).strip()
    return None


def product_title(product: Optional[Mapping[str, Any]]) -> Optional[str]:
    if not product:
        return None
    name = product.get("name") or product.get("title")
    return str(name) if name else None


# ---------- 搜索结果 ----------
def products_from_payload(payload: Mapping[str, Any]) -> List[Tuple[str, Dict[str, Any]]]:
    """
    product/search 的 data.products 可能是 {id: product} 也可能是 [product]，
    统一成保持原顺序的 [(key, product)]。
    """
    products = payload.get("products") if isinstance(payload, Mapping) else None
    if isinstance(products, dict):
        return [(str(k), v) for k, v in products.items() if isinstance(v, dict)]
    if isinstance(products, list):
        out = []
        for idx, item in enumerate(products):
            if isinstance(item, dict):
                key = item.get("idNhanh") or item.get("id") or idx
                out.append((str(key), item))
        return out
    return []


def resolve_product(
    products: List[Tuple[str, Dict[str, Any]]],
    warehouse_product_id: str,
    *,
    strict: bool = False,
) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """
    按优先级在搜索结果里挑商品：
      a. 结果 key 与 warehouse_product_id 完全相等
      b. 某条结果的 idNhanh 等于 warehouse_product_id
      c. 都没有且结果非空：取第一条（strict=True 时改为抛 ValidationError）
    返回 (product, resolution)；结果为空时返回 (None, None)。
    """
    wanted = str(warehouse_product_id)

    for key, product in products:
        if key == wanted:
            return product, RESOLUTION_EXACT

    for _, product in products:
        if str(product.get("idNhanh", "")) == wanted:
            return product, RESOLUTION_ALTERNATE

    if not products:
        return None, None

    if strict:
        raise ValidationError(f"warehouse product {wanted} not found in search results")

    first_key, first = products[0]
    logger.warning(
        "nhanh.resolve.fallback_first wanted=%s picked=%s candidates=%s",
        wanted, first_key, len(products),
    )
    return first, RESOLUTION_FALLBACK


# ---------- 库存 ----------
def parse_stock_level(product: Mapping[str, Any], depot_id: Optional[str] = None) -> StockLevel:
    """
    inventory.remain 为总量；inventory.depots[depot_id].available 存在时优先用它。
    inventory 本身是数字时直接当总量。结果向下取整且不小于 0；缺失或不是数字抛 ValidationError。
    """
    inventory = product.get("inventory")
    if inventory is None:
        raise ValidationError("warehouse product has no inventory data")

    if isinstance(inventory, (int, float, str)) and not isinstance(inventory, bool):
        return StockLevel(quantity=_to_quantity(inventory, "inventory"), source="inventory")

    if not isinstance(inventory, dict):
        raise ValidationError(f"unsupported inventory shape: {type(inventory).__name__}")

    if depot_id is not None:
        depots = inventory.get("depots")
        if isinstance(depots, dict):
            depot = depots.get(str(depot_id))
            if isinstance(depot, dict) and depot.get("available") is not None:
                return StockLevel(
                    quantity=_to_quantity(depot.get("available"), f"depots[{depot_id}].available"),
                    source=f"depot:{depot_id}",
                    depot_id=str(depot_id),
                )

    return StockLevel(quantity=_to_quantity(inventory.get("remain")), source="remain")


def _to_quantity(value: Any, field: str = "remain") -> int:
    # 缺失/非数字 → ValidationError；负数 → 0
    if value is None:
        raise ValidationError(f"warehouse stock {field} is missing")
    try:
        f = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"warehouse stock {field} is not a number: {value!r}") from None
    if math.isnan(f) or math.isinf(f):
        raise ValidationError(f"warehouse stock {field} is not a number: {value!r}")
    return max(0, int(math.floor(f)))


# ---------- 价格 ----------
def parse_price(snapshot: Any) -> Price:
    """
    支持两种形状：平铺 price，或嵌套 prices.{web, default}（web 优先）。
    找不到正数价格时抛 ValidationError("no valid price")。
    """
    data = load_snapshot(snapshot)
    if data is None:
        raise ValidationError("warehouse snapshot is missing or unparsable")

    flat = _to_decimal(data.get("price"))
    if flat is not None and flat > 0:
        return Price(amount=flat, source="price")

    prices = data.get("prices")
    if isinstance(prices, dict):
        for key in ("web", "default"):
            v = _to_decimal(prices.get(key))
            if v is not None and v > 0:
                return Price(amount=v, source=f"prices.{key}")

    raise ValidationError("no valid price")


def _to_decimal(v: Any) -> Optional[Decimal]:
    if v is None or isinstance(v, bool):
        return None
    try:
        d = Decimal(str(v).strip())
    except (InvalidOperation, ValueError):
        return None
    if d.is_nan() or d.is_infinite():
        return None
    return d
