"""Sequential batch resolution with a fixed pause between plates."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..errors import BatchTooLarge, InputInvalid
from ..normalize.schema import VehicleRecord
from .policy import ResolutionPolicy

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 10


def resolve_many(
    policy: ResolutionPolicy,
    plates: Sequence[str],
    kind: Optional[str] = None,
    pause: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> List[VehicleRecord]:
    """Resolve up to :data:`MAX_BATCH_SIZE` plates one after another.

    Each plate gets its own record, failed ones included.  The pause
    keeps a batch from hammering the upstreams back to back.

    Raises:
        InputInvalid: ``plates`` is empty.
        BatchTooLarge: more than :data:`MAX_BATCH_SIZE` plates.
    """
    if not plates:
        raise InputInvalid("at least one plate is required")
    if len(plates) > MAX_BATCH_SIZE:
        raise BatchTooLarge(f"at most {MAX_BATCH_SIZE} plates per batch, got {len(plates)}")
    records: List[VehicleRecord] = []
    for index, plate in enumerate(plates):
        if index and pause > 0:
            sleep(pause)
        logger.info("batch %d/%d: %s", index + 1, len(plates), plate)
        records.append(policy.resolve(plate, kind))
    return records


def batch_payload(records: Sequence[VehicleRecord]) -> Dict[str, Any]:
    return {
        "success": True,
        "total": len(records),
        "results": [record.to_dict() for record in records],
    }
