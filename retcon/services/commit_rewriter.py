"""Commit Rewriter — execute a :class:`RewritePlan` against a HistoryStore.

Writes one new commit object per :class:`CommitSpec`, oldest first, and
builds the ``original -> new`` identity map as it goes.  No ref is touched
here; moving the branch is the transactional apply's job.

A failed write aborts immediately with :class:`~retcon.errors.RewriteFailed`
carrying the partial map.  Objects written before the failure are left
unreferenced and are reclaimed by the store's garbage collection.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from retcon.errors import RewriteFailed
from retcon.services.rewrite_planner import RewritePlan
from retcon.storage import HistoryStore, StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RewriteResult:
    """Outcome of :func:`execute_plan`.

    Attributes:
        new_tip:      Identity the branch should point at afterwards; the
                      attachment point when nothing survived the range.
        identity_map: ``original -> new`` for every written commit, plus the
                      attachment point mapped to itself.
    """

    new_tip: str | None
    identity_map: dict[str, str] = field(default_factory=dict)


def execute_plan(store: HistoryStore, plan: RewritePlan) -> RewriteResult:
    """Write every commit in *plan* and return the new tip.

    Raises:
        RewriteFailed: a ``write_commit`` call failed.
    """
    identity_map: dict[str, str] = {}
    if plan.attachment is not None:
        identity_map[plan.attachment] = plan.attachment

    for spec in plan.specs:
        parents = [identity_map.get(p, p) for p in spec.parents]
        try:
            new_id = store.write_commit(
                spec.tree_id,
                parents,
                spec.author,
                spec.committer,
                spec.message,
            )
        except StorageError as exc:
            logger.error("❌ write_commit failed at %s: %s", spec.original_id[:7], exc)
            raise RewriteFailed(spec.original_id, exc, identity_map) from exc
        identity_map[spec.original_id] = new_id
        logger.debug("rewrote %s → %s", spec.original_id[:7], new_id[:7])

    new_tip = identity_map.get(plan.tip_source, plan.tip_source) if plan.tip_source else None
    logger.info(
        "✅ Wrote %d commit(s); new tip %s",
        len(plan.specs),
        new_tip[:7] if new_tip else "none",
    )
    return RewriteResult(new_tip=new_tip, identity_map=identity_map)
