"""
Closing the loop between form filling and the pattern store.

Before filling, fields whose selector already worked on the domain are
marked ``learned`` and moved ahead of the rest, so ``pick_field`` prefers
them. After the run, the outcome is written back per purpose.
"""

import logging
from dataclasses import replace
from typing import Dict, List

from .field_classifier import PURPOSE_KEYS, DetectedField, FillResult, pick_field
from .pattern_store import PatternStore

logger = logging.getLogger(__name__)


def apply_learned_selectors(
    fields: List[DetectedField],
    store: PatternStore,
    domain: str,
) -> List[DetectedField]:
    """
    Re-rank detected fields with the store's best selectors.

    Learned fields come first, in the store's order per purpose; all other
    fields keep their relative order. The store is only read.

    Returns:
        New list; the input list and its fields are left untouched
    """
    best: Dict[str, List[str]] = {}
    for f in fields:
        key = PURPOSE_KEYS.get(f.purpose)
        if key and key not in best:
            best[key] = store.get_best_selectors(domain, key)

    learned: List[tuple] = []
    rest: List[DetectedField] = []
    for f in fields:
        selectors = best.get(PURPOSE_KEYS.get(f.purpose), [])
        if f.selector in selectors:
            learned.append((selectors.index(f.selector), replace(f, learned=True)))
        else:
            rest.append(f)

    if learned:
        logger.info(f"Applied {len(learned)} learned selectors for {domain}")
    learned.sort(key=lambda item: item[0])
    return [f for _, f in learned] + rest


def record_fill_outcome(
    store: PatternStore,
    domain: str,
    engine_type: str,
    fields: List[DetectedField],
    result: FillResult,
    success: bool,
) -> int:
    """
    Write a run's outcome to the store.

    On success every selector that was written counts as a success; on
    failure every selector that was tried counts as a failure. Returns the
    number of rows touched.
    """
    engine = getattr(engine_type, "value", engine_type) or "unknown"
    touched = 0
    if success:
        for key, selector in result.selectors.items():
            store.record_success(domain, engine, key, selector)
            touched += 1
    else:
        attempted = result.attempted or _chosen_selectors(fields)
        for key, selector in attempted.items():
            store.record_failure(domain, engine, key, selector)
            touched += 1
    logger.debug(f"Recorded {'success' if success else 'failure'} for {touched} selectors on {domain}")
    return touched


def _chosen_selectors(fields: List[DetectedField]) -> Dict[str, str]:
    chosen = {}
    for purpose, key in PURPOSE_KEYS.items():
        target = pick_field(fields, purpose)
        if target:
            chosen[key] = target.selector
    return chosen
