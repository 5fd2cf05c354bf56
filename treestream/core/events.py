"""Signal delivery shared by readers, writers and content streams."""

import inspect
from collections import defaultdict
from typing import Any, Callable, Dict, List


class EventEmitter:
    """Ordered listener registry with awaitable emission.

    Listeners run in registration order. A listener returning an awaitable
    is awaited before the next one runs, which is how consumers push back
    on producers: a reader emitting ``data`` does not read the next chunk
    until every listener has finished with the current one.

    Emitting ``error`` with nobody listening raises the error at the emit
    site.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Callable[..., Any]]] = defaultdict(list)

    def on(self, event: str, listener: Callable[..., Any]) -> Callable[..., Any]:
        """Subscribe ``listener`` to ``event``. Returns the listener."""
        self._listeners[event].append(listener)
        return listener

    def once(self, event: str, listener: Callable[..., Any]) -> Callable[..., Any]:
        """Subscribe ``listener`` for a single delivery of ``event``."""
        def wrapper(*args):
            self.off(event, wrapper)
            return listener(*args)
        return self.on(event, wrapper)

    def off(self, event: str, listener: Callable[..., Any]) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    async def emit(self, event: str, *args: Any) -> bool:
        """Deliver ``event`` to its listeners.

        Returns:
            True if at least one listener received the signal
        """
        listeners = list(self._listeners.get(event, ()))
        if not listeners:
            if event == "error" and args and isinstance(args[0], BaseException):
                raise args[0]
            return False

        for listener in listeners:
            result = listener(*args)
            if inspect.isawaitable(result):
                await result
        return True

    def proxy(self, source: "EventEmitter", *events: str) -> None:
        """Re-emit ``events`` from ``source`` on this emitter verbatim."""
        for event in events:
            source.on(event, self._relay(event))

    def _relay(self, event: str) -> Callable[..., Any]:
        def relay(*args):
            return self.emit(event, *args)
        return relay
