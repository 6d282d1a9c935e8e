"""Decide how to fetch project items for the requested issues."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .errors import NoValidIssuesError, PlanningError
from .github_client import TrackerClient
from .logging import StructuredLogger, get_logger
from .models import IssueRef, ProjectItem

_RE_NUMBER = re.compile(r"^#?(\d+)$")
_RE_QUALIFIED = re.compile(r"^([\w.-]+)/([\w.-]+)#(\d+)$")
_RE_URL = re.compile(r"^https?://github\.com/([\w.-]+)/([\w.-]+)/(?:issues|pull)/(\d+)/?$")

__all__ = [
    "QueryPlan",
    "QueryPlanner",
    "build_issue_refs",
    "parse_issue_reference",
]


def parse_issue_reference(value: str) -> tuple[str, str, int]:
    """Parse ``42``, ``#42``, ``owner/repo#42`` or an issue URL.

    Owner and repo are empty strings when the reference is a bare number.
    """
    text = value.strip()
    m = _RE_NUMBER.match(text)
    if m:
        return "", "", int(m.group(1))
    m = _RE_QUALIFIED.match(text) or _RE_URL.match(text)
    if m:
        return m.group(1), m.group(2), int(m.group(3))
    raise PlanningError(f"invalid issue reference: {value!r}")


def build_issue_refs(
    args: Iterable[str], default_repo: tuple[str, str] | None
) -> tuple[list[IssueRef], list[str]]:
    refs: list[IssueRef] = []
    problems: list[str] = []
    for arg in args:
        try:
            owner, repo, number = parse_issue_reference(arg)
        except PlanningError as exc:
            problems.append(f"#{arg.lstrip('#')}: {exc}")
            continue
        if not owner or not repo:
            if default_repo is None:
                problems.append(f"#{number}: no repository specified")
                continue
            owner, repo = default_repo
        refs.append(IssueRef(owner, repo, number))
    return refs, problems


@dataclass
class QueryPlan:
    items: list[ProjectItem]
    roots: list[ProjectItem]
    problems: list[str] = field(default_factory=list)
    full_fetch: bool = False

    def index(self) -> dict[str, ProjectItem]:
        return {item.ref.key: item for item in self.items}


class QueryPlanner:
    """Chooses a targeted or full item fetch and matches the results to refs.

    Recursive runs need the full project listing so that descendants can be
    looked up without further calls; otherwise only the requested issues are
    fetched, falling back to a full listing if the targeted query fails.
    """

    def __init__(
        self,
        client: TrackerClient,
        project_id: str,
        logger: StructuredLogger | None = None,
    ):
        self._client = client
        self._project_id = project_id
        self._logger = logger or get_logger()

    def _full_fetch(self) -> list[ProjectItem]:
        try:
            return self._client.get_project_items(self._project_id, None)
        except Exception as exc:
            raise PlanningError(f"failed to get project items: {exc}") from exc

    def plan_and_fetch(
        self,
        refs: Sequence[IssueRef],
        recursive: bool,
        problems: Iterable[str] = (),
    ) -> QueryPlan:
        issues = list(problems)
        full = recursive or not refs
        if full:
            items = self._full_fetch()
        else:
            try:
                items = self._client.get_project_items_by_issues(self._project_id, refs)
            except Exception as exc:
                self._logger.warning(
                    f"targeted fetch failed, falling back to full fetch: {exc}",
                    project_id=self._project_id,
                )
                items = self._full_fetch()
                full = True

        by_key = {item.ref.key: item for item in items}
        roots: list[ProjectItem] = []
        for ref in refs:
            item = by_key.get(ref.key)
            if item is None:
                issues.append(f"#{ref.number}: not in project")
                continue
            roots.append(item)

        if not roots:
            raise NoValidIssuesError(issues)
        return QueryPlan(items=items, roots=roots, problems=issues, full_fetch=full)
