from typing import Any, Dict, Optional

from fastapi import Header

from synchub.core.errors import AuthError
from synchub.core.security import decode_token, extract_bearer


'''
受保护路由的统一依赖：只认 Authorization: Bearer <jwt>
  - token 缺失/无效/过期 → AuthError（main 里转 401）
'''
def get_current_principal(authorization: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    token = extract_bearer(authorization)
    if not token:
        raise AuthError("missing bearer token")
    payload = decode_token(token)
    if not payload or not payload.get("sub"):
        raise AuthError("invalid or expired token")
    return payload


def actor_of(principal: Dict[str, Any]) -> str:
    return str(principal.get("sub") or "system")
