"""
Helpers for calls that may fail without failing the caller.
"""
import logging
from typing import Callable, Iterable, Optional, Tuple

import requests

from integrations.gsc import GSCError

logger = logging.getLogger(__name__)

BEST_EFFORT_ERRORS = (GSCError, requests.exceptions.RequestException)


def best_effort(label: str, func: Callable, *args, errors=BEST_EFFORT_ERRORS, **kwargs):
    """
    Attempt func(*args, **kwargs), log and return None if it raises one of errors.

    Database errors are not in the default set and propagate.
    """
    try:
        return func(*args, **kwargs)
    except errors as exc:
        logger.warning(f"{label} failed, continuing without it: {exc}")
        return None


def first_confirmed(strategies: Iterable[Tuple[str, Callable[[], Optional[bool]]]]) -> Tuple[bool, Optional[str], list]:
    """
    Run strategies in order and stop at the first one that confirms.

    Each strategy returns True (confirmed), False (checked, not confirmed) or
    None (could not check). Returns (confirmed, name of the confirming
    strategy, list of (name, outcome) for every strategy that ran).
    """
    checks = []
    for name, strategy in strategies:
        outcome = strategy()
        checks.append((name, outcome))
        if outcome:
            return True, name, checks
    return False, None, checks
