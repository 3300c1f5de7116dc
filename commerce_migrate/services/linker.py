"""Source-to-target id mapping shared between entity kind phases."""

import logging
from typing import Dict, Optional, Tuple

from ..errors import LinkNotFound
from ..models.canonical import EntityKind, OriginKey
from ..models.record import TargetRef

logger = logging.getLogger(__name__)


class CrossEntityLinker:
    """
    Records which target record each origin key became.

    Later phases (subscriptions) use it to attach to the newly created
    product instead of the source one. Owned by the orchestrator for a
    single run.
    """

    def __init__(self):
        self._refs: Dict[OriginKey, TargetRef] = {}
        self._by_source: Dict[Tuple[EntityKind, str], OriginKey] = {}

    def record(self, origin: OriginKey, ref: TargetRef) -> None:
        """Remember the target record created for an origin key."""
        if origin in self._refs:
            logger.warning(f"Overwriting link for {origin}: {self._refs[origin].id} -> {ref.id}")
        self._refs[origin] = ref
        # First variant wins for source-level lookups
        self._by_source.setdefault((origin.kind, origin.source_id), origin)
        logger.debug(f"Linked {origin} -> {ref.id}")

    def lookup(self, origin: OriginKey) -> TargetRef:
        """
        Get the target record for an origin key.

        Raises:
            LinkNotFound: If nothing was created for the key
        """
        try:
            return self._refs[origin]
        except KeyError:
            raise LinkNotFound(f"No target record for {origin}") from None

    def lookup_source(self, kind: EntityKind, source_id: str) -> TargetRef:
        """
        Get the first target record created for any variant of a source id.

        Raises:
            LinkNotFound: If nothing was created for the source id
        """
        origin = self._by_source.get((kind, source_id))
        if origin is None:
            raise LinkNotFound(f"No target record for {kind.value}:{source_id}")
        return self._refs[origin]

    def find(self, origin: OriginKey) -> Optional[TargetRef]:
        return self._refs.get(origin)

    def __len__(self) -> int:
        return len(self._refs)

    def __contains__(self, origin: OriginKey) -> bool:
        return origin in self._refs
