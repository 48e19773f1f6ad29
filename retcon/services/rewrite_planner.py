"""Rewrite Planner — compute the minimal consistent rewrite of a branch.

Algorithm
---------
1. Walk the snapshot oldest → newest and find the first index ``i0`` whose
   commit is deleted, carries a field override, or sits at a different slot
   under the display order.  No such index → empty plan (apply is a no-op).
2. The rewrite range is ``[i0, tip]``.  Every commit in it is regenerated,
   edited or not, because its parent's identity changes.
3. Walk the display order restricted to the range, oldest first, carrying
   ``prev`` — the commit the next survivor attaches to (starts at the
   attachment point, the untouched commit just below the range):

   - deleted commit  → dropped; ``prev`` is left alone, so its child is
     reparented onto the deleted commit's own (possibly rewritten) parent.
   - any other commit → emitted with first parent ``prev``.  Extra parents
     of a merge are kept as-is when outside the range, and otherwise must
     already have been emitted (or resolved through a deletion).

Parents in a :class:`CommitSpec` are *original* identities.  They are
turned into new identities by the rewriter's identity map at execution
time, with anything outside the range mapping to itself.

Safety
------
Reordering is restricted to adjacent swaps of non-merge commits, so the
display order is always a permutation of the snapshot with every merge in
its original slot.  :func:`plan_rewrite` still verifies this and raises
:class:`~retcon.errors.CyclicReorder` rather than emit a graph it cannot
represent.  No storage I/O happens here.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from retcon.errors import CyclicReorder, EmptyHistory
from retcon.models import GraphSnapshot, OriginalCommit, Signature
from retcon.services.pending_changes import PendingChangeStore

logger = logging.getLogger(__name__)

_SUMMARY_DETAIL_LIMIT = 5


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommitSpec:
    """One commit to synthesize.

    Attributes:
        original_id: Identity of the commit being regenerated.
        tree_id:     Content tree, always the original's.
        parents:     Parent identities in *original* identity space.
        author:      Resolved author signature.
        committer:   Resolved committer signature.
        message:     Resolved message.
        edited:      True when at least one field differs from the original.
    """

    original_id: str
    tree_id: str
    parents: tuple[str, ...]
    author: Signature
    committer: Signature
    message: str
    edited: bool = False

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1


@dataclass(frozen=True)
class RewritePlan:
    """Ordered rewrite of the range ``[range_start, tip]``.

    Attributes:
        branch:      Branch the plan was computed for.
        base_tip:    Tip identity the plan assumes (compare-and-swap guard).
        attachment:  First commit below the range; ``None`` when the range
                     starts at a root.
        specs:       Commits to write, oldest first.
        deleted:     Original identities dropped from the range.
        range_start: Oldest-first index ``i0`` of the range, ``None`` if empty.
        tip_source:  Original identity whose rewrite becomes the new tip
                     (the attachment point when every commit was deleted).
    """

    branch: str
    base_tip: str | None
    attachment: str | None
    specs: tuple[CommitSpec, ...] = ()
    deleted: tuple[str, ...] = ()
    range_start: int | None = None
    tip_source: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.range_start is None

    @property
    def rewritten_count(self) -> int:
        return len(self.specs)


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def plan_rewrite(
    snapshot: GraphSnapshot,
    changes: PendingChangeStore,
    *,
    sync_author_to_committer: bool = False,
) -> RewritePlan:
    """Build the :class:`RewritePlan` for the pending changes in *changes*.

    Raises:
        CyclicReorder: display order is not representable as a linear rewrite.
        EmptyHistory:  every commit down to the root is deleted.
    """
    base_tip = snapshot.tip.commit_id if snapshot.tip else None
    oldest = snapshot.oldest_first()
    order = tuple(reversed(changes.display_order))
    _check_order(oldest, order)

    i0 = _first_affected_index(oldest, order, changes)
    if i0 is None:
        logger.debug("plan: no pending changes on %s", snapshot.branch)
        return RewritePlan(branch=snapshot.branch, base_tip=base_tip, attachment=base_tip)

    first = oldest[i0]
    attachment = first.parent_ids[0] if first.parent_ids else None
    in_range = set(order[i0:])

    resolved_deleted: dict[str, str | None] = {}
    emitted: set[str] = set()
    specs: list[CommitSpec] = []
    deleted: list[str] = []
    prev = attachment

    for commit_id in order[i0:]:
        original = snapshot.get(commit_id)
        if changes.is_deleted(commit_id):
            resolved_deleted[commit_id] = prev
            deleted.append(commit_id)
            continue

        parents: list[str] = [prev] if prev is not None else []
        for extra in original.parent_ids[1:]:
            mapped = _resolve_extra_parent(original, extra, in_range, emitted, resolved_deleted)
            if mapped is not None:
                parents.append(mapped)

        effective = changes.get_effective(
            commit_id, sync_author_to_committer=sync_author_to_committer
        )
        specs.append(
            CommitSpec(
                original_id=commit_id,
                tree_id=original.tree_id,
                parents=tuple(parents),
                author=effective.author,
                committer=effective.committer,
                message=effective.message,
                edited=(
                    effective.author != original.author
                    or effective.committer != original.committer
                    or effective.message != original.message
                ),
            )
        )
        emitted.add(commit_id)
        prev = commit_id

    if not specs and attachment is None:
        raise EmptyHistory()

    plan = RewritePlan(
        branch=snapshot.branch,
        base_tip=base_tip,
        attachment=attachment,
        specs=tuple(specs),
        deleted=tuple(deleted),
        range_start=i0,
        tip_source=prev,
    )
    logger.info(
        "✅ Planned rewrite of %s: %d commit(s) from index %d, %d deleted",
        snapshot.branch,
        len(specs),
        i0,
        len(deleted),
    )
    return plan


def _first_affected_index(
    oldest: tuple[OriginalCommit, ...],
    order: tuple[str, ...],
    changes: PendingChangeStore,
) -> int | None:
    for index, commit in enumerate(oldest):
        if order[index] != commit.commit_id or changes.is_touched(commit.commit_id):
            return index
    return None


def _check_order(oldest: tuple[OriginalCommit, ...], order: tuple[str, ...]) -> None:
    """Display order must permute the snapshot and leave every merge in place."""
    if len(order) != len(oldest) or set(order) != {c.commit_id for c in oldest}:
        culprit = next(iter(set(order) ^ {c.commit_id for c in oldest}), "?" * 7)
        raise CyclicReorder(culprit, "display order is not a permutation of the loaded history")
    for index, commit in enumerate(oldest):
        if commit.is_merge and order[index] != commit.commit_id:
            raise CyclicReorder(commit.commit_id, "merge commit moved from its original position")


def _resolve_extra_parent(
    commit: OriginalCommit,
    parent_id: str,
    in_range: set[str],
    emitted: set[str],
    resolved_deleted: dict[str, str | None],
) -> str | None:
    if parent_id not in in_range:
        return parent_id
    if parent_id in resolved_deleted:
        return resolved_deleted[parent_id]
    if parent_id in emitted:
        return parent_id
    raise CyclicReorder(
        commit.commit_id,
        f"parent {parent_id[:7]} would be written after its child",
    )


# ---------------------------------------------------------------------------
# Human-readable summary
# ---------------------------------------------------------------------------


def summarize_plan(plan: RewritePlan, changes: PendingChangeStore) -> list[str]:
    """Describe the pending rewrite for a confirmation prompt.

    Returns an empty list for an empty plan.
    """
    if plan.is_empty:
        return []

    lines: list[str] = []
    if changes.deleted_count:
        lines.append(f"{changes.deleted_count} commit(s) will be deleted")
    modified = [
        cid for cid in changes.snapshot.order if not changes.edits_for(cid).is_empty
    ]
    if modified:
        lines.append(f"{len(modified)} commit(s) with modified metadata")
    if changes.order_changed:
        lines.append("Commit order has been changed")

    for commit_id in modified[:_SUMMARY_DETAIL_LIMIT]:
        touched = changes.edits_for(commit_id).touched()
        names = ", ".join(f.display_name.lower().replace("commit ", "") for f in touched)
        lines.append(f"  {commit_id[:7]} - {names}")
    if len(modified) > _SUMMARY_DETAIL_LIMIT:
        lines.append(f"  ... and {len(modified) - _SUMMARY_DETAIL_LIMIT} more")

    lines.append(
        f"{plan.rewritten_count} commit(s) will be rewritten on {plan.branch!r}"
    )
    return lines
