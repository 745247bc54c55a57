"""
会话校验（只校验，不签发）。

登录/刷新 cookie 都由托管的认证服务负责；这里只验证它签发的 access token：
- HS256 + 共享密钥
- 必须有 `sub`（即 user_id），audience 为 `authenticated`
- 失败一律 401，不区分原因（避免泄露细节）
"""

from __future__ import annotations

import logging

import jwt
from fastapi import HTTPException

logger = logging.getLogger(__name__)

SESSION_AUDIENCE = "authenticated"


class SessionVerifier:
    def __init__(self, jwt_secret: str, audience: str = SESSION_AUDIENCE) -> None:
        if not jwt_secret:
            raise ValueError("jwt_secret must be non-empty")
        self._jwt_secret = jwt_secret
        self._audience = audience

    def verify(self, token: str) -> str:
        """校验 token 并返回 user_id（`sub` claim）。"""
        try:
            claims = jwt.decode(
                token,
                self._jwt_secret,
                algorithms=["HS256"],
                audience=self._audience,
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            logger.warning("Session token expired")
            raise HTTPException(status_code=401, detail="Not authenticated") from exc
        except jwt.InvalidTokenError as exc:
            logger.warning(f"Invalid session token: {exc}")
            raise HTTPException(status_code=401, detail="Not authenticated") from exc

        user_id = claims.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise HTTPException(status_code=401, detail="Not authenticated")
        return user_id

    def verify_authorization_header(self, authorization: str | None) -> str:
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Not authenticated")
        return self.verify(authorization.removeprefix("Bearer ").strip())
