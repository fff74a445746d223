"""Pack opinions into size-bounded batches for classification requests."""

import logging
import math
from dataclasses import dataclass
from typing import List, Sequence

from ..config import DEFAULT_MAX_COUNT, DEFAULT_MAX_SIZE_UNITS
from ..models import Opinion

logger = logging.getLogger(__name__)

# Inflation over raw character length, covering tokenization and request overhead.
SIZE_FACTOR = 1.3
# Numbering and separators added around each opinion in the request.
FRAMING_COST = 20


@dataclass(frozen=True)
class BatchBudget:
    max_size_units: int = DEFAULT_MAX_SIZE_UNITS
    max_count: int = DEFAULT_MAX_COUNT

    def __post_init__(self):
        if self.max_size_units < 1 or self.max_count < 1:
            raise ValueError("Batch budget limits must be positive")


def estimate_size(opinion: Opinion) -> int:
    return math.ceil(len(opinion.content) * SIZE_FACTOR) + FRAMING_COST


def pack(opinions: Sequence[Opinion], budget: BatchBudget) -> List[List[Opinion]]:
    """Greedily group opinions in their given order.

    A new batch starts when the next opinion would push the current one past
    either limit. An opinion that alone exceeds the size budget still gets a
    batch of its own.
    """
    batches: List[List[Opinion]] = []
    current: List[Opinion] = []
    current_size = 0

    for opinion in opinions:
        size = estimate_size(opinion)
        over_size = current_size + size > budget.max_size_units
        over_count = len(current) + 1 > budget.max_count
        if current and (over_size or over_count):
            batches.append(current)
            current = []
            current_size = 0
        if not current and size > budget.max_size_units:
            logger.warning(
                f"Opinion {opinion.id} ({size} units) exceeds batch budget "
                f"{budget.max_size_units}, sending alone"
            )
        current.append(opinion)
        current_size += size

    if current:
        batches.append(current)

    logger.debug(f"Packed {len(opinions)} opinions into {len(batches)} batches")
    return batches
