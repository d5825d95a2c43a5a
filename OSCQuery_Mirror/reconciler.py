"""Rebuild the mirror tree from a fresh schema while carrying over session state."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from OSCQuery_Mirror.mirror_tree import MirrorGroup, MirrorTree, apply_value_state, value_state
from OSCQuery_Mirror.schema_compiler import compile_schema


logger = logging.getLogger("OSCQueryMirror.reconcile")


@dataclass
class GroupFlags:
    listen: List[str] = field(default_factory=list)
    expanded: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {"listen": list(self.listen), "expanded": list(self.expanded)}

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "GroupFlags":
        payload = payload if isinstance(payload, dict) else {}
        listen = payload.get("listen") if isinstance(payload.get("listen"), list) else []
        expanded = payload.get("expanded") if isinstance(payload.get("expanded"), list) else []
        return cls(listen=[str(a) for a in listen], expanded=[str(a) for a in expanded])


def snapshot_flags(root: MirrorGroup) -> GroupFlags:
    flags = GroupFlags()
    for group in root.iter_groups():
        if group.listen_enabled:
            flags.listen.append(group.address)
        if group.expanded:
            flags.expanded.append(group.address)
    return flags


def apply_flags(root: MirrorGroup, flags: GroupFlags) -> None:
    for address in flags.listen:
        group = root.find(address)
        if isinstance(group, MirrorGroup) and group is not root:
            group.listen_enabled = True
    for address in flags.expanded:
        group = root.find(address)
        if isinstance(group, MirrorGroup) and group is not root:
            group.expanded = True


def rebuild(
    tree: MirrorTree,
    schema_root: Dict[str, Any],
    values: Optional[Dict[str, Any]] = None,
    flags: Optional[GroupFlags] = None,
) -> MirrorGroup:
    """Compile ``schema_root``, restore ``values``/``flags`` onto it and swap it in."""
    new_root = compile_schema(schema_root)
    if values:
        applied = apply_value_state(new_root, values)
        logger.debug(f"Restored {applied}/{len(values)} values onto the new tree")
    if flags is not None:
        apply_flags(new_root, flags)
    tree.replace_root(new_root)
    return new_root


def reconcile(tree: MirrorTree, schema_root: Dict[str, Any], preserve_values: bool) -> MirrorGroup:
    """
    Replace the tree with one compiled from ``schema_root``.

    The groups' listen and expanded flags always survive. With
    ``preserve_values`` the previous values are also written back onto every
    address that still exists; without it values come from the schema.
    """
    with tree.lock:
        old_root = tree.root
        flags = snapshot_flags(old_root)
        values = value_state(old_root) if preserve_values else None
        return rebuild(tree, schema_root, values=values, flags=flags)
