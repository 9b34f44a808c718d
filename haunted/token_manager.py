"""
Event Gateway token storage.

Tokens are always kept in memory and mirrored to Redis when it is
reachable. The first Redis failure disables Redis for the rest of the
process lifetime; from then on memory is the only source.
"""

import logging
from typing import Dict, List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from haunted.alexa_service import AlexaService
from haunted.models import TokenInfo, TokenRecord

logger = logging.getLogger(__name__)

KEY_PREFIX = "event_gateway_"
ACCESS_TOKEN_TTL = 3600  # seconds


def _access_key(key: str) -> str:
    return f"token:{key}"


def _refresh_key(key: str) -> str:
    return f"refresh:{key}"


class TokenManager:
    """Stores Alexa Event Gateway tokens per linked user (grantee token)."""

    def __init__(
        self,
        alexa: AlexaService,
        redis: Optional[Redis] = None,
    ):
        self.alexa = alexa
        self.redis = redis
        # Set on the first Redis failure ("quota exceeded"), never cleared
        self.redis_disabled = redis is None
        self._access_tokens: Dict[str, str] = {}
        self._refresh_tokens: Dict[str, str] = {}

    @property
    def redis_enabled(self) -> bool:
        return not self.redis_disabled

    def _disable_redis(self, error: Exception) -> None:
        if not self.redis_disabled:
            logger.warning(
                f"Redis unavailable ({error}); using in-memory token storage only"
            )
        self.redis_disabled = True

    async def store_event_gateway_token(
        self,
        grantee_token: str,
        access_token: str,
        refresh_token: Optional[str],
    ) -> TokenRecord:
        """Persist the tokens obtained for one linked user."""
        key = f"{KEY_PREFIX}{grantee_token}"
        self._access_tokens[key] = access_token
        if refresh_token:
            self._refresh_tokens[key] = refresh_token

        if self.redis_enabled:
            try:
                await self.redis.set(_access_key(key), access_token, ex=ACCESS_TOKEN_TTL)
                if refresh_token:
                    await self.redis.set(_refresh_key(key), refresh_token)
            except RedisError as e:
                self._disable_redis(e)

        logger.info("Event Gateway tokens stored for user")
        return TokenRecord(
            grantee_token=grantee_token,
            access_token=access_token,
            refresh_token=refresh_token,
        )

    async def _redis_access_tokens(self) -> Dict[str, str]:
        """Read every stored access token from Redis, keyed like the memory map."""
        if not self.redis_enabled:
            return {}

        found: Dict[str, str] = {}
        try:
            keys = [k async for k in self.redis.scan_iter(match=f"token:{KEY_PREFIX}*")]
            if keys:
                values = await self.redis.mget(keys)
                for redis_key, value in zip(keys, values):
                    if value is None:
                        continue
                    if isinstance(redis_key, bytes):
                        redis_key = redis_key.decode()
                    if isinstance(value, bytes):
                        value = value.decode()
                    found[redis_key[len("token:"):]] = value
        except RedisError as e:
            self._disable_redis(e)
            return {}
        return found

    async def get_event_gateway_token(self) -> Optional[str]:
        """Return any one linked user's access token."""
        tokens = await self.get_all_event_gateway_tokens()
        return tokens[0] if tokens else None

    async def get_all_event_gateway_tokens(self) -> List[str]:
        """Return the access tokens of every linked user, without duplicates."""
        tokens: List[str] = [
            token
            for key, token in self._access_tokens.items()
            if key.startswith(KEY_PREFIX)
        ]
        for token in (await self._redis_access_tokens()).values():
            if token not in tokens:
                tokens.append(token)
        return tokens

    async def _find_key(self, access_token: str) -> Optional[str]:
        for key, token in self._access_tokens.items():
            if token == access_token:
                return key
        for key, token in (await self._redis_access_tokens()).items():
            if token == access_token:
                return key
        return None

    async def _find_refresh_token(self, key: str) -> Optional[str]:
        refresh_token = self._refresh_tokens.get(key)
        if refresh_token or not self.redis_enabled:
            return refresh_token
        try:
            value = await self.redis.get(_refresh_key(key))
        except RedisError as e:
            self._disable_redis(e)
            return None
        if isinstance(value, bytes):
            value = value.decode()
        return value

    async def refresh_access_token(self, access_token: str) -> Optional[str]:
        """
        Refresh the user owning ``access_token``.

        Returns the new access token, or None when no refresh token is on
        file or the exchange fails. Callers must treat None as "user has to
        re-link the skill" and not retry.
        """
        key = await self._find_key(access_token)
        if key is None:
            logger.warning("No user found for expired access token")
            return None

        refresh_token = await self._find_refresh_token(key)
        if not refresh_token:
            logger.warning("No refresh token on file; user must re-link")
            return None

        success, tokens, error = await self.alexa.refresh_tokens(refresh_token)
        if not success or tokens is None:
            logger.error(f"Token refresh failed: {error}")
            return None

        new_access = tokens["access_token"]
        new_refresh = tokens.get("refresh_token") or refresh_token
        await self.store_event_gateway_token(
            key[len(KEY_PREFIX):], new_access, new_refresh
        )

        logger.info("Access token refreshed")
        return new_access

    async def token_info(self) -> TokenInfo:
        return TokenInfo(
            total_sessions=len(self._access_tokens),
            total_refresh_tokens=len(self._refresh_tokens),
            has_event_gateway_token=await self.get_event_gateway_token() is not None,
            redis_enabled=self.redis_enabled,
        )

    async def close(self) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.aclose()
        except RedisError as e:
            logger.debug(f"Error closing Redis connection: {e}")
