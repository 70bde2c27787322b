"""
Ordered fallback resolution shared by search and doc discovery.
"""

import logging
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

logger = logging.getLogger("apiflora.fallback")

T = TypeVar("T")

Step = tuple[str, Callable[[], Awaitable[Optional[T]]]]


def is_empty(value: object) -> bool:
    if value is None:
        return True
    try:
        return len(value) == 0  # type: ignore[arg-type]
    except TypeError:
        return False


async def first_available(steps: Sequence[Step], label: str = "resolve") -> tuple[Optional[str], Optional[T]]:
    """
    Run named steps in order and return (step_name, value) for the first
    one that produces a non-empty value. Returns (None, None) when every
    step comes up empty.

    Steps are expected to handle their own provider failures; an
    exception escaping a step is a programming error and propagates.
    """
    for name, step in steps:
        value = await step()
        if not is_empty(value):
            logger.info("%s: resolved by %s", label, name)
            return name, value
        logger.debug("%s: %s produced nothing", label, name)
    return None, None
