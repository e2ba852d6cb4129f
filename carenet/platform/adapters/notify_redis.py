import json
import logging
from redis.asyncio import from_url as redis_from_url
from carenet.platform.ports.notifier import NotifierPort
from carenet.core.config import settings

log = logging.getLogger("notify.redis")

class RedisStreamNotifier(NotifierPort):
    """Publishes notifications onto a Redis stream consumed by the push worker."""

    def __init__(self):
        if not settings.REDIS_URL:
            raise RuntimeError("REDIS_URL not configured")
        self.redis = redis_from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        self.stream = settings.REDIS_NOTIFY_STREAM or "carenet.notifications"

    async def send(self, target_user_id: str, payload: dict) -> bool:
        entry = {
            "target": target_user_id,
            "payload": json.dumps(payload),
        }
        msg_id = await self.redis.xadd(self.stream, entry, maxlen=settings.REDIS_STREAM_MAXLEN, approximate=True)
        log.debug(f"[REDIS NOTIFY] XADD stream={self.stream} target={target_user_id} id={msg_id}")
        return bool(msg_id)

    async def close(self):
        await self.redis.close()
