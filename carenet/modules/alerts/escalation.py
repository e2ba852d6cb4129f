import logging
from datetime import timedelta
from typing import Protocol, runtime_checkable
from carenet.modules.alerts.models import Alert

log = logging.getLogger("alerts.escalation")

@runtime_checkable
class EscalationPolicy(Protocol):
    async def on_unacknowledged(self, alert: Alert, elapsed: timedelta) -> None:
        """Called once per alert when nobody has acknowledged it in time."""
        ...

class LoggingEscalationPolicy(EscalationPolicy):
    async def on_unacknowledged(self, alert: Alert, elapsed: timedelta) -> None:
        log.warning(
            "Alert %s (%s/%s) for ward %s unacknowledged after %ss",
            alert.id, alert.type, alert.severity, alert.ward_id, int(elapsed.total_seconds()),
        )
