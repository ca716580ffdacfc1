from typing import Callable


class Subscription:
    """Handle returned by every ``subscribe`` call.

    ``cancel`` is idempotent. Producers check ``active`` before delivering.
    """

    def __init__(self, on_cancel: Callable[["Subscription"], None] | None = None):
        self._on_cancel = on_cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._on_cancel is not None:
            self._on_cancel(self)
