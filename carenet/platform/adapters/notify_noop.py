import json
import logging
from carenet.platform.ports.notifier import NotifierPort

log = logging.getLogger("notify.noop")

class NoopNotifier(NotifierPort):
    async def send(self, target_user_id: str, payload: dict) -> bool:
        log.info(f"[NOOP NOTIFY] target={target_user_id} payload={json.dumps(payload)}")
        return True
