"""Process-wide bookkeeping: live instances and known-good / known-bad sources."""

import logging
import threading
from collections import Counter
from typing import Dict, Hashable, List, Optional

from .models import ReentrantCallError, ResourceInstance, ResourceState

logger = logging.getLogger(__name__)


class ResourceRegistry:
    """Tracks resource instances and the URLs that have already failed or succeeded.

    Membership in the two URL sets is write-once and never evicted; a URL is
    never in both. Each insert takes the lock on its own, there is no
    invariant spanning several operations.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._failed: set = set()
        self._succeeded: set = set()
        self._instances: Dict[Hashable, ResourceInstance] = {}

    # URL bookkeeping

    def is_known_failed(self, url: str) -> bool:
        return url in self._failed

    def is_known_succeeded(self, url: str) -> bool:
        return url in self._succeeded

    def record_failure(self, url: str) -> bool:
        """Remember a failed URL. Returns False if it was already known either way."""
        if not url:
            return False
        with self._lock:
            if url in self._failed or url in self._succeeded:
                return False
            self._failed.add(url)
        logger.debug("Known failed: %s", url)
        return True

    def record_success(self, url: str) -> bool:
        """Remember a URL that loaded. Returns False if it was already known either way."""
        if not url:
            return False
        with self._lock:
            if url in self._succeeded or url in self._failed:
                return False
            self._succeeded.add(url)
        return True

    @property
    def failed_sources(self) -> frozenset:
        with self._lock:
            return frozenset(self._failed)

    @property
    def succeeded_sources(self) -> frozenset:
        with self._lock:
            return frozenset(self._succeeded)

    # Instances

    def claim(self, resource_id: Hashable, original_source: str,
              anchor_hint: Optional[str] = None) -> ResourceInstance:
        """Create the instance for ``resource_id``.

        Raises ``ReentrantCallError`` carrying the existing instance if the id
        was already claimed.
        """
        with self._lock:
            existing = self._instances.get(resource_id)
            if existing is not None:
                raise ReentrantCallError(existing)
            instance = ResourceInstance(
                id=resource_id, original_source=original_source, anchor_hint=anchor_hint
            )
            self._instances[resource_id] = instance
            return instance

    def get(self, resource_id: Hashable) -> Optional[ResourceInstance]:
        return self._instances.get(resource_id)

    def instances(self) -> List[ResourceInstance]:
        with self._lock:
            return list(self._instances.values())

    def __contains__(self, resource_id: Hashable) -> bool:
        return resource_id in self._instances

    def __len__(self) -> int:
        return len(self._instances)

    def stats(self) -> Dict[str, int]:
        """Instance counts per state plus the sizes of the URL sets."""
        counts = Counter(instance.state for instance in self.instances())
        stats = {state.value: counts.get(state, 0) for state in ResourceState}
        stats['known_failed'] = len(self._failed)
        stats['known_succeeded'] = len(self._succeeded)
        return stats
