from typing import Protocol, runtime_checkable

@runtime_checkable
class NotifierPort(Protocol):
    async def send(self, target_user_id: str, payload: dict) -> bool:
        """Hand one notification to the push transport.

        Returns True when the transport accepted it, False when it refused.
        Delivery is at-least-once: the same payload may arrive twice.
        """
        ...
