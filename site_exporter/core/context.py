"""Request-scoped identity of whoever triggered the current operation."""

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import FrozenSet, Iterator, Optional


@dataclass(frozen=True)
class Requester:
    """The user behind a request, as reported by the host environment."""

    user_id: int = 0
    ip: str = "unknown"
    capabilities: FrozenSet[str] = field(default_factory=frozenset)
    referer: str = ""

    def can(self, capability: str) -> bool:
        return capability in self.capabilities


ANONYMOUS = Requester()

_current_requester: ContextVar[Optional[Requester]] = ContextVar(
    "site_exporter_requester", default=None
)


def current_requester() -> Requester:
    return _current_requester.get() or ANONYMOUS


@contextmanager
def requester_scope(requester: Requester) -> Iterator[Requester]:
    """Attribute log entries written inside the block to ``requester``."""
    token = _current_requester.set(requester)
    try:
        yield requester
    finally:
        _current_requester.reset(token)
