from carenet.core.config import settings
from carenet.platform.ports.notifier import NotifierPort
from carenet.platform.adapters.notify_noop import NoopNotifier
from carenet.platform.adapters.notify_redis import RedisStreamNotifier
from carenet.platform.adapters.notify_webhook import WebhookNotifier

class ProviderRegistry:
    _notifier: NotifierPort | None = None

    @classmethod
    def notifier(cls) -> NotifierPort:
        if cls._notifier is None:
            prov = (settings.NOTIFIER_PROVIDER or "noop").lower()
            if prov == "redis":
                cls._notifier = RedisStreamNotifier()
            elif prov == "webhook":
                cls._notifier = WebhookNotifier()
            else:
                cls._notifier = NoopNotifier()
        return cls._notifier

    @classmethod
    def override_notifier(cls, notifier: NotifierPort | None) -> None:
        cls._notifier = notifier

    @classmethod
    async def close(cls) -> None:
        closer = getattr(cls._notifier, "close", None)
        if closer:
            await closer()
        cls._notifier = None

registry = ProviderRegistry()
