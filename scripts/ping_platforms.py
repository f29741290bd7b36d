from datetime import date, timedelta

from synchub.core.logging import configure_logging
from synchub.integrations.nhanh import NhanhProductsAPI
from synchub.integrations.shopify import ShopifyClient

if __name__ == "__main__":
    configure_logging()

    shop = ShopifyClient().ping()
    print("shopify:", shop.get("name"), shop.get("myshopify_domain"))

    items, pages = NhanhProductsAPI().search_page(updated_from=date.today() - timedelta(days=1), page=1, limit=1)
    print("nhanh:", len(items), "item(s) on page 1 of", pages)


# 运行
# export $(grep -v '^#' .env | xargs)   # 若你用 .env
# PYTHONPATH=backend python scripts/ping_platforms.py



# 两行都打印出来说明 Shopify token/域名 与 Nhanh appId/businessId/accessToken 都 OK
