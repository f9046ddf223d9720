"""
Context Store - The shared key/value context of one run.

Every node reads the live context as part of its input and merges its
output back into it. Before a node runs, the store snapshots itself; if the
node fails, that snapshot is restored so a half-finished node leaves no
trace.

Parallel waves use ``fork()``: each member works on its own copy, and the
scheduler replays each successful member's ``diff`` back once the wave has
settled.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Literal

from siteflow.schemas.session import Checkpoint

logger = logging.getLogger(__name__)


def deep_merge(target: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    """Merge ``update`` into ``target`` in place. Nested dicts merge key by key;
    scalars and lists overwrite."""
    for key, value in update.items():
        existing = target.get(key)
        if isinstance(value, dict) and isinstance(existing, dict):
            deep_merge(existing, value)
        else:
            target[key] = copy.deepcopy(value)
    return target


@dataclass
class ContextChange:
    """One difference between two contexts."""

    keys: tuple[str, ...]
    kind: Literal["added", "deleted", "edited"]
    old_value: Any = None
    new_value: Any = None

    @property
    def path(self) -> str:
        return ".".join(self.keys)


class ContextStore:
    """
    Mutable context for a single run, with checkpoint/rollback.

    Example:
        store = ContextStore({"site_id": "s1"})
        cp = store.checkpoint("sitemap")
        store.merge({"sitemap": {"pages": 12}})
        store.restore(cp)  # back to {"site_id": "s1"}
    """

    def __init__(
        self,
        initial: dict[str, Any] | None = None,
        journal: list[Checkpoint] | None = None,
    ):
        """
        Args:
            initial: Starting context (deep-copied)
            journal: Append-only list that receives every checkpoint taken by
                this store and its forks (usually ``session.checkpoints``)
        """
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._checkpoints: list[Checkpoint] = []
        self._journal = journal if journal is not None else []

    @property
    def data(self) -> dict[str, Any]:
        """The live context. Mutations are visible to the whole run."""
        return self._data

    @property
    def checkpoints(self) -> list[Checkpoint]:
        """Checkpoints taken by this store (not its forks)."""
        return list(self._checkpoints)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the current context."""
        return copy.deepcopy(self._data)

    def checkpoint(self, node_id: str) -> Checkpoint:
        """Capture the context immediately before ``node_id`` runs."""
        checkpoint = Checkpoint(node_id=node_id, context=self.snapshot())
        self._checkpoints.append(checkpoint)
        self._journal.append(checkpoint)
        return checkpoint

    def rollback(self) -> Checkpoint | None:
        """Restore the most recent checkpoint of this store."""
        if not self._checkpoints:
            logger.debug("Rollback requested with no checkpoints; context unchanged")
            return None
        checkpoint = self._checkpoints[-1]
        self.restore(checkpoint)
        return checkpoint

    def restore(self, checkpoint: Checkpoint) -> None:
        """Replace the context with a specific checkpoint.

        The live dict is replaced, not edited, so a collaborator still
        holding the old dict cannot write into the restored context.
        """
        self._data = copy.deepcopy(checkpoint.context)

    def merge(self, update: dict[str, Any]) -> None:
        """Deep-merge ``update`` into the live context."""
        deep_merge(self._data, update)

    def fork(self) -> "ContextStore":
        """Independent copy that shares this store's checkpoint journal."""
        return ContextStore(self._data, journal=self._journal)

    def apply(self, changes: list[ContextChange]) -> None:
        """Replay changes produced by ``diff`` onto the live context."""
        for change in changes:
            *parents, leaf = change.keys
            target = self._data
            for key in parents:
                child = target.get(key)
                if not isinstance(child, dict):
                    child = {}
                    target[key] = child
                target = child
            if change.kind == "deleted":
                target.pop(leaf, None)
            elif isinstance(change.new_value, dict) and isinstance(target.get(leaf), dict):
                deep_merge(target[leaf], change.new_value)
            else:
                target[leaf] = copy.deepcopy(change.new_value)

    @staticmethod
    def diff(
        left: dict[str, Any],
        right: dict[str, Any],
        prefix: tuple[str, ...] = (),
    ) -> list[ContextChange]:
        """List the paths added, deleted or edited going from ``left`` to ``right``."""
        changes: list[ContextChange] = []
        for key in left:
            keys = (*prefix, key)
            if key not in right:
                changes.append(ContextChange(keys=keys, kind="deleted", old_value=left[key]))
            elif isinstance(left[key], dict) and isinstance(right[key], dict):
                changes.extend(ContextStore.diff(left[key], right[key], prefix=keys))
            elif left[key] != right[key]:
                changes.append(
                    ContextChange(
                        keys=keys, kind="edited", old_value=left[key], new_value=right[key]
                    )
                )
        for key in right:
            if key not in left:
                changes.append(
                    ContextChange(keys=(*prefix, key), kind="added", new_value=right[key])
                )
        return changes
