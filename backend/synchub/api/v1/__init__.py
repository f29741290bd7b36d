from fastapi import APIRouter, Depends
from .deps import get_current_principal


# 非受保护路由
from .routes_health import router as health_router


# 需要 Bearer token 的受保护路由
from .mappings import router as mappings_router
from .sync import router as sync_router


api_v1 = APIRouter()
api_v1.include_router(health_router)      # /health 不需要登录

protected = APIRouter(dependencies=[Depends(get_current_principal)])
protected.include_router(mappings_router)
protected.include_router(sync_router)

api_v1.include_router(protected)
