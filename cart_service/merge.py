# cart_service/merge.py
# Cart Merge Service: re-admits the client-held guest cart through reserve after login.
# Lines leave the mirror one at a time and the mirror is empty after every merge.
# A line's fingerprint (identity, snapshot id, product, quantity, size, addedAt) is claimed
# in a MergeGuard before reserving, so a retried snapshot is reported as a duplicate.
import hashlib
import json
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from cart_service.admission import ReservationResult, ReserveMode, reserve
from cart_service.config import CART_TTL
from cart_service.db.functions import list_lines
from cart_service.db.models import CartLine
from cart_service.errors import InputInvalid, NotFound, StoreUnavailable

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EphemeralCartLine:
    id: str
    quantity: int
    name: str = ""
    price: float = 0.0
    image_url: Optional[str] = None
    size: Optional[str] = None
    added_at: Optional[int] = None  # epoch milliseconds, as written by the client

    def fingerprint(self, identity: str, snapshot_id: Optional[str] = None) -> str:
        raw = json.dumps([identity, snapshot_id, self.id, self.quantity, self.size, self.added_at])
        return hashlib.sha256(raw.encode()).hexdigest()


class EphemeralCartMirror:
    """Client-held cart lines awaiting a merge."""

    def __init__(self, lines=()):
        self._lines = deque(lines)

    def __len__(self):
        return len(self._lines)

    @property
    def lines(self) -> List[EphemeralCartLine]:
        return list(self._lines)

    def take(self) -> Optional[EphemeralCartLine]:
        return self._lines.popleft() if self._lines else None

    def clear(self) -> None:
        self._lines.clear()


class MergeGuard:
    """Remembers merged line fingerprints for one cart TTL. Process-local."""

    def __init__(self, ttl=CART_TTL, clock=time.monotonic):
        self.ttl_seconds = ttl.total_seconds()
        self._clock = clock
        self._claims: dict[str, float] = {}

    def _purge(self, now: float) -> None:
        for fingerprint in [fp for fp, expires in self._claims.items() if expires <= now]:
            del self._claims[fingerprint]

    def claim(self, fingerprint: str) -> bool:
        now = self._clock()
        self._purge(now)
        if fingerprint in self._claims:
            return False
        self._claims[fingerprint] = now + self.ttl_seconds
        return True

    def release(self, fingerprint: str) -> None:
        self._claims.pop(fingerprint, None)

    def reset(self) -> None:
        self._claims.clear()


recent_merges = MergeGuard()


@dataclass(frozen=True)
class MergeRejection:
    product_id: str
    attempted: int
    available: int
    reason: str


@dataclass
class MergedCart:
    identity: str
    admitted: List[ReservationResult] = field(default_factory=list)
    rejected: List[MergeRejection] = field(default_factory=list)
    duplicates: List[EphemeralCartLine] = field(default_factory=list)
    lines: List[CartLine] = field(default_factory=list)


async def merge_cart(db: AsyncSession, identity: str, mirror: EphemeralCartMirror,
                     guard: MergeGuard = recent_merges, now: datetime = None, ttl=CART_TTL,
                     snapshot_id: Optional[str] = None) -> MergedCart:
    merged = MergedCart(identity=identity)

    while True:
        line = mirror.take()
        if line is None:
            break

        fingerprint = line.fingerprint(identity, snapshot_id)
        if not guard.claim(fingerprint):
            merged.duplicates.append(line)
            continue

        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
            merged.rejected.append(MergeRejection(line.id, line.quantity, 0, InputInvalid.code))
            continue

        try:
            result = await reserve(db, identity, line.id, line.quantity, ReserveMode.DELTA, now=now, ttl=ttl)
        except (InputInvalid, NotFound) as exc:
            merged.rejected.append(MergeRejection(line.id, line.quantity, 0, exc.code))
            continue
        except StoreUnavailable as exc:
            guard.release(fingerprint)
            merged.rejected.append(MergeRejection(line.id, line.quantity, 0, exc.code))
            continue

        if result.admitted:
            merged.admitted.append(result)
        else:
            merged.rejected.append(MergeRejection(line.id, line.quantity, result.available, result.reason))

    # Failed lines are reported, not kept for another attempt
    mirror.clear()

    merged.lines = await list_lines(db, identity, ttl=ttl, now=now)
    logger.info(
        "Guest cart merged",
        identity=identity,
        admitted=len(merged.admitted),
        rejected=len(merged.rejected),
        duplicates=len(merged.duplicates),
    )
    return merged
