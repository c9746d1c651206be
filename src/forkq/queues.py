"""Queue list resolution."""

from collections.abc import Iterable

from .errors import NoQueueError
from .store.base import Store

WILDCARD = "*"


def normalize_queues(queues: Iterable[str]) -> list[str]:
    """Trim queue names and drop empty entries."""
    names = (str(name).strip() for name in queues)
    return [name for name in names if name]


class QueueResolver:
    """Turns a configured queue list into an ordered polling list.

    Literal names are polled in the configured order. The wildcard is
    replaced at every poll by all queues the store currently knows, sorted
    alphabetically, at the wildcard's position. Names listed explicitly
    keep their own position and are not repeated by the expansion.
    """

    def __init__(self, queues: Iterable[str]) -> None:
        """Normalize the names; raise NoQueueError if nothing is left."""
        self.queues = normalize_queues(queues)
        if not self.queues:
            raise NoQueueError()

    @property
    def has_wildcard(self) -> bool:
        return WILDCARD in self.queues

    def resolve(self, store: Store) -> list[str]:
        """Polling order for one reservation pass."""
        if not self.has_wildcard:
            return list(self.queues)

        fixed = {name for name in self.queues if name != WILDCARD}
        expansion = [name for name in sorted(store.list_queues()) if name not in fixed]

        resolved: list[str] = []
        for name in self.queues:
            resolved.extend(expansion if name == WILDCARD else [name])

        # The list may repeat a name or the wildcard; keep the first occurrence.
        return list(dict.fromkeys(resolved))
