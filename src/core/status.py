"""
Restriction lists - sanctioned and SANEPID-controlled code prefixes.

Each list is replaced wholesale by an authenticated administrative update;
reads are best-effort and degrade to an empty list.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from .config import SANCTIONS_KEY, SANEPID_KEY, STATUS_CODE_LENGTH
from .dao import KVStore, StorageUnavailable
from .schema import StatusList
from util.logging import logger

SANCTIONS = "sanctions"
SANEPID = "sanepid"

LIST_KEYS: Dict[str, str] = {
    SANCTIONS: SANCTIONS_KEY,
    SANEPID: SANEPID_KEY,
}


@dataclass
class StatusUpdateResult:
    list_type: str
    submitted: int
    accepted: int
    last_updated: datetime
    codes: List[str]

    @property
    def rejected(self) -> int:
        return self.submitted - self.accepted


def _code_pattern(length: int) -> "re.Pattern":
    return re.compile(rf"^\d{{{length}}}$")


def validate_codes(codes: Iterable, length: int = STATUS_CODE_LENGTH) -> List[str]:
    """Keep fixed-length digit codes, in first-seen order, without duplicates."""
    pattern = _code_pattern(length)
    accepted = []
    seen = set()
    for raw in codes:
        if not isinstance(raw, str):
            continue
        code = raw.strip()
        if pattern.match(code) and code not in seen:
            seen.add(code)
            accepted.append(code)
    return accepted


def load_codes_from_file(path, length: int = STATUS_CODE_LENGTH) -> List[str]:
    """Read one code per line; '#' starts a comment line, other lines are dropped if malformed."""
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    candidates = [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]
    return validate_codes(candidates, length)


class StatusRegistry:
    """The two independent restriction lists held in the store."""

    def __init__(self, store: KVStore, code_length: int = STATUS_CODE_LENGTH,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.store = store
        self.code_length = code_length
        self.clock = clock

    @staticmethod
    def _key(list_type: str) -> str:
        try:
            return LIST_KEYS[list_type]
        except KeyError:
            raise ValueError(f"Unknown list type: {list_type} (expected one of {sorted(LIST_KEYS)})")

    def get(self, list_type: str) -> StatusList:
        """Read a list; absent or unreadable lists are empty."""
        key = self._key(list_type)
        try:
            data = self.store.get_json(key)
        except StorageUnavailable as e:
            logger.log_operation(f"status_list.{list_type}", "degraded", {"error": str(e)[:100]})
            return StatusList(name=list_type)

        if not data:
            return StatusList(name=list_type)

        try:
            return StatusList.from_dict(list_type, data)
        except (AttributeError, TypeError, ValueError) as e:
            logger.log_operation(f"status_list.{list_type}", "degraded", {"error": str(e)[:100]})
            return StatusList(name=list_type)

    def sanctions(self) -> StatusList:
        return self.get(SANCTIONS)

    def sanepid(self) -> StatusList:
        return self.get(SANEPID)

    def replace(self, list_type: str, codes: Iterable, updated_by: Optional[str] = None) -> StatusUpdateResult:
        """Replace a list wholesale. Malformed codes are dropped and counted.

        Raises:
            ValueError: unknown list type
            StorageUnavailable: the write failed; the previous list is unchanged
        """
        key = self._key(list_type)
        submitted = list(codes)
        accepted = validate_codes(submitted, self.code_length)
        now = self.clock()

        status_list = StatusList(
            name=list_type,
            prefixes=frozenset(accepted),
            last_updated=now,
            updated_by=updated_by,
        )
        self.store.put_json(key, status_list.to_dict())

        logger.log_status_update(list_type, len(submitted), len(accepted), updated_by)
        return StatusUpdateResult(
            list_type=list_type,
            submitted=len(submitted),
            accepted=len(accepted),
            last_updated=now,
            codes=accepted,
        )
