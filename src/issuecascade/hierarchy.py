from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from .github_client import TrackerClient
from .logging import StructuredLogger, get_logger
from .models import HierarchyNode, IssueRef, ProjectItem, SubIssue


@dataclass
class CollectionResult:
    nodes: list[HierarchyNode] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    batch_calls: int = 0

    @property
    def tracked(self) -> list[HierarchyNode]:
        return [n for n in self.nodes if n.tracked]

    @property
    def untracked(self) -> list[HierarchyNode]:
        return [n for n in self.nodes if not n.tracked]


class HierarchyCollector:
    """Breadth-first sub-issue traversal, one batch query per repository per level.

    The frontier holds every parent at the current depth so children of all
    of them can be requested together. Children are not deduplicated; the
    depth bound is what ends a cyclic hierarchy. A failed batch query drops
    that repository's children at that level with a warning; parents are not
    retried one by one.
    """

    def __init__(
        self,
        client: TrackerClient,
        known_items: Mapping[str, ProjectItem],
        logger: StructuredLogger | None = None,
    ):
        self._client = client
        self._known = known_items
        self._logger = logger or get_logger()

    def collect(self, root: IssueRef, max_depth: int) -> CollectionResult:
        result = CollectionResult()
        frontier: list[IssueRef] = [root]
        depth = 0
        while frontier and depth < max_depth:
            children = self._fetch_level(frontier, result)
            next_frontier: list[IssueRef] = []
            for parent in frontier:
                for sub in children.get(parent.key, []):
                    node = self._node_for(sub, parent, depth + 1)
                    result.nodes.append(node)
                    next_frontier.append(node.ref)
            frontier = next_frontier
            depth += 1
        return result

    def _fetch_level(
        self, frontier: list[IssueRef], result: CollectionResult
    ) -> dict[str, list[SubIssue]]:
        groups: dict[tuple[str, str], list[int]] = {}
        for ref in frontier:
            numbers = groups.setdefault((ref.owner, ref.repo), [])
            if ref.number not in numbers:
                numbers.append(ref.number)

        children: dict[str, list[SubIssue]] = {}
        for (owner, repo), numbers in groups.items():
            result.batch_calls += 1
            try:
                batch = self._client.get_sub_issues_batch(owner, repo, numbers)
            except Exception as exc:
                message = f"failed to get sub-issues for {owner}/{repo} {_numbers(numbers)}: {exc}"
                result.warnings.append(message)
                self._logger.warning(message, owner=owner, repo=repo)
                continue
            for number in numbers:
                children[IssueRef(owner, repo, number).key] = list(batch.get(number, []))
        return children

    def _node_for(self, sub: SubIssue, parent: IssueRef, depth: int) -> HierarchyNode:
        ref = IssueRef(sub.owner or parent.owner, sub.repo or parent.repo, sub.number)
        item = self._known.get(ref.key)
        if item is None:
            return HierarchyNode(
                ref=ref, depth=depth, title=sub.title, issue_id=sub.id, state=sub.state
            )
        return HierarchyNode(
            ref=ref,
            depth=depth,
            item_id=item.item_id,
            title=sub.title or item.title,
            body=item.issue.body,
            issue_id=sub.id or item.issue_id,
            state=sub.state or item.state,
            field_values=list(item.field_values),
        )


def _numbers(numbers: list[int]) -> str:
    return ", ".join(f"#{n}" for n in numbers)


__all__ = ["CollectionResult", "HierarchyCollector"]
