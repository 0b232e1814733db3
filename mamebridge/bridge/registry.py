from __future__ import annotations

import logging
from typing import Dict, List, Optional

logger = logging.getLogger("mamebridge.bridge.registry")

# Ids at or above this are assigned quietly
LOG_NEW_ID_LIMIT = 1000


class NameRegistry:
    """Bidirectional output name <-> id mapping for one upstream session.

    Ids start at 1 and are handed out in first-seen order; id 0 is reserved
    for the session name and is never assigned here.
    """

    def __init__(self) -> None:
        self._name_to_id: Dict[str, int] = {}
        self._id_to_name: Dict[int, str] = {}
        self._next_id = 1

    def resolve(self, name: str) -> int:
        output_id = self._name_to_id.get(name)
        if output_id is not None:
            return output_id

        output_id = self._next_id
        self._next_id += 1
        self._name_to_id[name] = output_id
        self._id_to_name[output_id] = name
        if output_id < LOG_NEW_ID_LIMIT:
            logger.info("New output '%s' -> id %d", name, output_id)
        return output_id

    def lookup(self, output_id: int) -> Optional[str]:
        return self._id_to_name.get(output_id)

    def clear(self) -> None:
        self._name_to_id.clear()
        self._id_to_name.clear()
        self._next_id = 1

    def names(self) -> List[str]:
        return list(self._name_to_id)

    def __contains__(self, name: object) -> bool:
        return name in self._name_to_id

    def __len__(self) -> int:
        return len(self._name_to_id)
