from __future__ import annotations

from typing import Any, Callable, List, Optional


Callback = Callable[[Any], None]


class Subscription:
    """
    Handle returned by Observable.add(). Owned by the caller;
    remove() detaches the callback and is safe to call any number of times.
    """
    def __init__(self, observable: "Observable", callback: Callback, *, once: bool = False) -> None:
        self._observable: Optional[Observable] = observable
        self.callback = callback
        self.once = once

    @property
    def active(self) -> bool:
        return self._observable is not None

    def remove(self) -> None:
        obs = self._observable
        if obs is None:
            return
        self._observable = None
        obs._detach(self)


class Observable:
    def __init__(self) -> None:
        self._subs: List[Subscription] = []

    def add(self, callback: Callback) -> Subscription:
        sub = Subscription(self, callback)
        self._subs.append(sub)
        return sub

    def add_once(self, callback: Callback) -> Subscription:
        sub = Subscription(self, callback, once=True)
        self._subs.append(sub)
        return sub

    def has_observers(self) -> bool:
        return bool(self._subs)

    def __len__(self) -> int:
        return len(self._subs)

    def notify(self, event: Any = None) -> None:
        # snapshot: callbacks may add/remove observers while we iterate
        for sub in list(self._subs):
            if not sub.active:
                continue
            if sub.once:
                sub.remove()
            sub.callback(event)

    def clear(self) -> None:
        for sub in list(self._subs):
            sub.remove()

    def _detach(self, sub: Subscription) -> None:
        try:
            self._subs.remove(sub)
        except ValueError:
            pass
