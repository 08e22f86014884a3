import redis.asyncio as redis

# ── Rate Limiting (Atomic Lua Script) ──────────────────────────────────────

RATE_LIMIT_PREFIX = "ratelimit:"

# Atomic check-and-increment. Returns 1 if allowed, 0 if denied
_RATE_LIMIT_LUA = """
local key = KEYS[1]
local max_count = tonumber(ARGV[1])
local window = tonumber(ARGV[2])

local current = tonumber(redis.call('GET', key) or '0')
if current >= max_count then
    return 0
end

local new_count = redis.call('INCR', key)
if new_count == 1 then
    redis.call('EXPIRE', key, window)
end
return 1
"""


def create_redis(url: str) -> redis.Redis:
    return redis.from_url(url, encoding="utf-8", decode_responses=True)


class RateLimiter:
    """Per-client request counter over a fixed window, backed by Redis."""

    def __init__(self, client: redis.Redis):
        self.client = client
        self._script = None

    async def check(self, client_id: str, action: str, max_count: int, window_seconds: int) -> bool:
        """Return True if the client is within the limit. Check and increment are one atomic step."""
        key = f"{RATE_LIMIT_PREFIX}{action}:{client_id}"
        if self._script is None:
            self._script = self.client.register_script(_RATE_LIMIT_LUA)
        result = await self._script(keys=[key], args=[max_count, window_seconds])
        return bool(result)

    async def remaining(self, client_id: str, action: str, max_count: int) -> int:
        """Remaining requests for a client in the current window."""
        count = await self.client.get(f"{RATE_LIMIT_PREFIX}{action}:{client_id}")
        if count is None:
            return max_count
        return max(0, max_count - int(count))

    async def close(self) -> None:
        await self.client.aclose()
