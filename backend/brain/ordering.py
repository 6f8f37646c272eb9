"""Dependency ordering for subtasks.

Prerequisites come from untrusted oracle output, so the relation may be
cyclic, self-referencing or point at subtasks that do not exist. Ordering
always terminates and always returns every subtask exactly once.
"""
from __future__ import annotations

import heapq
import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional

from roadmaps.schemas import Subtask

logger = logging.getLogger(__name__)


@dataclass
class DependencyOrder:
    order: list[Subtask]
    prerequisites: dict[str, set[str]]
    fallback_ids: list[str] = field(default_factory=list)
    unresolved: dict[str, list[str]] = field(default_factory=dict)

    @property
    def has_cycle(self) -> bool:
        return bool(self.fallback_ids)


def resolve_prerequisites(subtasks: list[Subtask]) -> tuple[dict[str, set[str]], dict[str, list[str]]]:
    """Map each subtask id to the ids of its prerequisites.

    A reference matches a subtask id first, then a case-insensitive title
    when exactly one subtask carries it. Anything else is reported as
    unresolved and ignored.
    """
    by_id = {s.id: s for s in subtasks}
    by_title: dict[str, list[str]] = defaultdict(list)
    for s in subtasks:
        by_title[s.title.strip().casefold()].append(s.id)

    edges: dict[str, set[str]] = {s.id: set() for s in subtasks}
    unresolved: dict[str, list[str]] = {}

    for s in subtasks:
        for ref in s.prerequisites:
            ref = (ref or "").strip()
            if not ref:
                continue
            if ref in by_id:
                target = ref
            else:
                matches = by_title.get(ref.casefold(), [])
                if len(matches) != 1:
                    unresolved.setdefault(s.id, []).append(ref)
                    continue
                target = matches[0]
            if target == s.id:
                unresolved.setdefault(s.id, []).append(ref)
                continue
            edges[s.id].add(target)

    for sid, refs in unresolved.items():
        logger.warning("Ignoring unresolved prerequisites of %s: %s", by_id[sid].title, refs)
    return edges, unresolved


def dependency_order(
    subtasks: list[Subtask],
    priority: Optional[dict[str, float]] = None,
) -> DependencyOrder:
    """Topologically sort subtasks (Kahn's algorithm).

    Among subtasks that are ready at the same time, the lower `priority`
    value goes first, then declared list order. Subtasks still holding a
    positive in-degree when the queue drains sit on or behind a cycle; they
    are appended in declared list order.
    """
    priority = priority or {}
    edges, unresolved = resolve_prerequisites(subtasks)
    position = {s.id: i for i, s in enumerate(subtasks)}
    by_id = {s.id: s for s in subtasks}

    in_degree = {sid: len(prereqs) for sid, prereqs in edges.items()}
    dependants: dict[str, list[str]] = defaultdict(list)
    for sid, prereqs in edges.items():
        for p in prereqs:
            dependants[p].append(sid)

    ready = [(priority.get(sid, math.inf), position[sid], sid) for sid, deg in in_degree.items() if deg == 0]
    heapq.heapify(ready)

    order: list[Subtask] = []
    while ready:
        _, _, sid = heapq.heappop(ready)
        order.append(by_id[sid])
        for dep in dependants[sid]:
            in_degree[dep] -= 1
            if in_degree[dep] == 0:
                heapq.heappush(ready, (priority.get(dep, math.inf), position[dep], dep))

    fallback_ids = [s.id for s in subtasks if in_degree[s.id] > 0]
    if fallback_ids:
        logger.warning(
            "Prerequisite cycle detected; %d subtask(s) fall back to list order", len(fallback_ids)
        )
        order.extend(by_id[sid] for sid in fallback_ids)

    return DependencyOrder(
        order=order,
        prerequisites=edges,
        fallback_ids=fallback_ids,
        unresolved=unresolved,
    )
