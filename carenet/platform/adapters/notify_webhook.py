import logging
import httpx
from carenet.platform.ports.notifier import NotifierPort
from carenet.core.config import settings

log = logging.getLogger("notify.webhook")

class WebhookNotifier(NotifierPort):
    """Posts notifications to an HTTP push gateway (FCM/APNs bridge).

    The gateway resolves device tokens for ``target_user_id``; any 2xx answer
    counts as accepted.
    """

    def __init__(self, url: str | None = None, timeout: float | None = None):
        self.url = url or settings.NOTIFY_WEBHOOK_URL
        if not self.url:
            raise RuntimeError("NOTIFY_WEBHOOK_URL not configured")
        self.timeout = timeout or settings.NOTIFY_WEBHOOK_TIMEOUT_SECONDS

    async def send(self, target_user_id: str, payload: dict) -> bool:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self.url, json={"target_user_id": target_user_id, "payload": payload})
        if resp.is_success:
            return True
        log.warning(f"Push gateway refused notification for {target_user_id}: {resp.status_code} {resp.text[:200]}")
        return False
