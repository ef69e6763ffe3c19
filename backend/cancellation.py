import asyncio
import weakref
from typing import Optional


class CancellationToken:
    """Cancellation signal threaded through every call that can block.

    Tokens form a tree: a run-wide token hands out testcase-scoped children,
    and cancelling a token cancels all of its descendants. Cancelling a child
    never touches the parent.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = asyncio.Event()
        self._children = weakref.WeakSet()
        self.reason: Optional[str] = None
        if parent is not None:
            parent._children.add(self)
            if parent.cancelled:
                self.cancel(parent.reason)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None):
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        for child in list(self._children):
            child.cancel(reason)

    def child(self) -> "CancellationToken":
        return CancellationToken(self)

    async def wait(self):
        await self._event.wait()

    def __repr__(self):
        state = f"cancelled({self.reason})" if self.cancelled else "live"
        return f"<CancellationToken {state}>"
