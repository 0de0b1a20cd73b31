"""
Publish/subscribe hub for project change events.
"""

from typing import Awaitable, Callable

from .logging_config import get_logger
from .models import ChangeEvent

ChangeListener = Callable[[ChangeEvent], Awaitable[None]]


class ChangeNotifier:
    """Fan change events out to every listener subscribed to the event's project."""

    def __init__(self):
        self._listeners: dict[str, list[ChangeListener]] = {}
        self._logger = get_logger(f"{__name__}.ChangeNotifier")

    def subscribe(self, project_id: str, listener: ChangeListener) -> None:
        self._listeners.setdefault(project_id, []).append(listener)
        self._logger.debug(
            "Listener subscribed",
            extra={'extra_data': {'project_id': project_id, 'listeners': len(self._listeners[project_id])}}
        )

    def unsubscribe(self, project_id: str, listener: ChangeListener) -> None:
        listeners = self._listeners.get(project_id, [])
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            self._listeners.pop(project_id, None)

    def listener_count(self, project_id: str) -> int:
        return len(self._listeners.get(project_id, []))

    async def publish(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners.get(event.project_id, [])):
            try:
                await listener(event)
            except Exception as e:
                # A broken subscriber must not fail the write that triggered it
                self._logger.warning(
                    "Failed to deliver change event",
                    extra={'extra_data': {
                        'project_id': event.project_id,
                        'kind': event.kind.value,
                        'error': str(e),
                    }}
                )
                self.unsubscribe(event.project_id, listener)
