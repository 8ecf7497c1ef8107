"""Dotted-path helpers for directive targets.

A target path such as ``config.display.format`` addresses nested mappings
inside one node section. Helpers here never mutate their input; they return
the replacement value for the path's first segment, which the store then
writes as a top-level key replacement.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

from nodeweave.contracts.enums import TargetOperation
from nodeweave.contracts.errors import TargetPathError


def split_path(path: str) -> list[str]:
    """Split a dotted path into segments.

    Raises:
        TargetPathError: If the path is empty or has an empty segment
    """
    if not path:
        raise TargetPathError(path, "path is empty")
    segments = path.split(".")
    if any(not segment for segment in segments):
        raise TargetPathError(path, "path has an empty segment")
    return segments


def check_target(section: Mapping[str, Any], path: str, operation: TargetOperation) -> None:
    """Check that ``operation`` can be applied at ``path`` in ``section``.

    ``set`` needs every existing intermediate to be a mapping (missing ones
    are created). ``merge`` needs the full path to resolve to a mapping.

    Raises:
        TargetPathError: If the path cannot be resolved
    """
    segments = split_path(path)
    current: Any = section
    walk = segments if operation == TargetOperation.MERGE else segments[:-1]
    for depth, segment in enumerate(walk):
        if not isinstance(current, Mapping):
            prefix = ".".join(segments[:depth])
            raise TargetPathError(path, f"{prefix!r} is not an object")
        if segment not in current:
            if operation == TargetOperation.MERGE:
                raise TargetPathError(path, f"{'.'.join(segments[: depth + 1])!r} does not exist")
            return
        current = current[segment]
    if operation == TargetOperation.MERGE and not isinstance(current, Mapping):
        raise TargetPathError(path, "merge target is not an object")
    if operation == TargetOperation.SET and not isinstance(current, Mapping):
        raise TargetPathError(path, f"{'.'.join(segments[:-1])!r} is not an object")


def apply_at_path(
    section: Mapping[str, Any],
    path: str,
    operation: TargetOperation,
    payload: Any,
) -> tuple[str, Any]:
    """Compute the new value of the path's first segment.

    Returns:
        ``(first_segment, new_value)`` built from a deep copy of ``section``

    Raises:
        TargetPathError: If the path cannot be resolved
    """
    check_target(section, path, operation)
    segments = split_path(path)
    head = segments[0]

    def _leaf(existing: Any) -> Any:
        if operation == TargetOperation.MERGE:
            return {**existing, **copy.deepcopy(dict(payload))}
        return copy.deepcopy(payload)

    if len(segments) == 1:
        return head, _leaf(section.get(head))

    root: dict[str, Any] = copy.deepcopy(dict(section.get(head) or {}))
    current = root
    for segment in segments[1:-1]:
        nxt = current.get(segment)
        if not isinstance(nxt, dict):
            nxt = dict(nxt) if isinstance(nxt, Mapping) else {}
            current[segment] = nxt
        current = nxt
    current[segments[-1]] = _leaf(current.get(segments[-1]))
    return head, root
