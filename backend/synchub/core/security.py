from typing import Any, Optional

from jose import JWTError, jwt

from synchub.core.config import settings


'''
只负责校验 Bearer token（签发在外部登录服务）
  - 解析失败/过期一律返回 None，由上层转成 AuthError
'''
def decode_token(token: str) -> Optional[dict[str, Any]]:
    secret = settings.SECRET_KEY.get_secret_value()
    try:
        return jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
