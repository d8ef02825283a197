from __future__ import annotations

import re
from typing import Iterable

# Instruction markers logged by the aggregator's route handlers
ROUTE_MARKERS = (
    "Program log: Instruction: Route",
    "Program log: Instruction: SharedAccountsRoute",
)
SWAP_VOCABULARY = re.compile(r"swap|trade|route", re.IGNORECASE)


def is_candidate(logs: Iterable[str], program_id: str) -> bool:
    """Cheap pre-fetch check on a log batch.

    Deliberately permissive: precision comes from the balance classifier,
    this only spares a fetch for batches that plainly are not swaps.
    """
    text = "\n".join(line for line in logs if line)
    if not text:
        return False
    if f"Program {program_id} invoke" in text:
        return True
    if any(marker in text for marker in ROUTE_MARKERS):
        return True
    return bool(SWAP_VOCABULARY.search(text))
