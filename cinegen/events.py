from typing import Callable, List

from cinegen.utils.logging_setup import setup_logger

logger = setup_logger(__name__)

Listener = Callable[[], None]


class _Subscription:
    __slots__ = ("listener",)

    def __init__(self, listener: Listener):
        self.listener = listener


class ConfigEventBus:
    """
    Notifies interested components that provider or sync configuration changed.

    Create one per application and pass it to whoever needs it.
    """

    def __init__(self):
        self._subscriptions: List[_Subscription] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        sub = _Subscription(listener)
        self._subscriptions.append(sub)

        def unsubscribe() -> None:
            # Identity match: the same callable may be registered more than once.
            self._subscriptions = [s for s in self._subscriptions if s is not sub]

        return unsubscribe

    def publish(self) -> None:
        for sub in list(self._subscriptions):
            try:
                sub.listener()
            except Exception:
                logger.exception(f"Error in config event listener {sub.listener!r}")

    def clear(self) -> None:
        self._subscriptions = []

    def __len__(self) -> int:
        return len(self._subscriptions)
