"""History rewrite engine services for retcon."""
from __future__ import annotations

from retcon.services.edit_session import EditSession, MoveDirection, NewTipSummary
from retcon.services.pending_changes import (
    EffectiveCommit,
    FieldEdit,
    PendingChange,
    PendingChangeStore,
)
from retcon.services.rewrite_planner import CommitSpec, RewritePlan, plan_rewrite, summarize_plan
from retcon.services.undo_stack import StackStatus, UndoRedoStack

__all__ = [
    "EditSession",
    "MoveDirection",
    "NewTipSummary",
    "EffectiveCommit",
    "FieldEdit",
    "PendingChange",
    "PendingChangeStore",
    "CommitSpec",
    "RewritePlan",
    "plan_rewrite",
    "summarize_plan",
    "StackStatus",
    "UndoRedoStack",
]
