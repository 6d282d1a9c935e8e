from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class IssueRef:
    """Identifies a work item independently of project item ids."""

    owner: str
    repo: str
    number: int

    @property
    def repo_key(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def key(self) -> str:
        return f"{self.owner}/{self.repo}#{self.number}"


@dataclass(frozen=True)
class Project:
    id: str
    number: int
    title: str = ""
    url: str = ""


@dataclass(frozen=True)
class FieldOption:
    id: str
    name: str


@dataclass(frozen=True)
class ProjectField:
    """Cached field metadata (the project's field schema)."""

    id: str
    name: str
    data_type: str
    options: tuple[FieldOption, ...] = ()

    def option_names(self) -> list[str]:
        return [opt.name for opt in self.options]


@dataclass
class FieldValue:
    field: str
    value: str


@dataclass
class Issue:
    id: str
    number: int
    title: str = ""
    body: str = ""
    state: str = "OPEN"
    owner: str = ""
    repo: str = ""

    @property
    def ref(self) -> IssueRef:
        return IssueRef(self.owner, self.repo, self.number)

    @property
    def is_open(self) -> bool:
        return self.state.upper() == "OPEN"


@dataclass
class SubIssue:
    id: str
    number: int
    title: str = ""
    state: str = "OPEN"
    owner: str = ""  # empty when the child lives in the parent's repository
    repo: str = ""


@dataclass
class ProjectItem:
    """One row of the project board backed by an issue."""

    item_id: str
    issue: Issue
    field_values: list[FieldValue] = field(default_factory=list)

    @property
    def issue_id(self) -> str:
        return self.issue.id

    @property
    def owner(self) -> str:
        return self.issue.owner

    @property
    def repo(self) -> str:
        return self.issue.repo

    @property
    def number(self) -> int:
        return self.issue.number

    @property
    def title(self) -> str:
        return self.issue.title

    @property
    def state(self) -> str:
        return self.issue.state

    @property
    def ref(self) -> IssueRef:
        return self.issue.ref

    def field_value(self, name: str) -> str:
        key = name.casefold()
        for fv in self.field_values:
            if fv.field.casefold() == key:
                return fv.value
        return ""

    def record_applied(self, field_name: str, value: str) -> None:
        """Reflect a successfully applied change for reporting."""
        key = field_name.casefold()
        for fv in self.field_values:
            if fv.field.casefold() == key:
                fv.value = value
                return
        self.field_values.append(FieldValue(field_name, value))


@dataclass
class HierarchyNode:
    ref: IssueRef
    depth: int
    item_id: str = ""
    title: str = ""
    body: str = ""
    issue_id: str = ""
    state: str = "OPEN"
    field_values: list[FieldValue] = field(default_factory=list)

    @property
    def tracked(self) -> bool:
        return bool(self.item_id)

    @property
    def number(self) -> int:
        return self.ref.number

    def as_project_item(self) -> ProjectItem:
        issue = Issue(
            id=self.issue_id,
            number=self.ref.number,
            title=self.title,
            body=self.body,
            state=self.state,
            owner=self.ref.owner,
            repo=self.ref.repo,
        )
        return ProjectItem(self.item_id, issue, self.field_values)

    @classmethod
    def from_item(cls, item: ProjectItem, depth: int = 0) -> HierarchyNode:
        return cls(
            ref=item.ref,
            depth=depth,
            item_id=item.item_id,
            title=item.title,
            body=item.issue.body,
            issue_id=item.issue_id,
            state=item.state,
            field_values=item.field_values,
        )


@dataclass(frozen=True)
class FieldUpdate:
    item_id: str
    field_name: str
    value: str  # "" clears the field

    @property
    def is_clear(self) -> bool:
        return self.value == ""


@dataclass
class PendingChange:
    """All field updates derived from the command for one item."""

    item_id: str
    updates: list[FieldUpdate] = field(default_factory=list)

    def add(self, field_name: str, value: str) -> None:
        key = field_name.casefold()
        if any(u.field_name.casefold() == key for u in self.updates):
            raise ValueError(f"Duplicate update for field '{field_name}' on item {self.item_id}")
        self.updates.append(FieldUpdate(self.item_id, field_name, value))


@dataclass(frozen=True)
class BatchUpdateResult:
    item_id: str
    field_name: str
    success: bool
    error: str = ""


@dataclass(frozen=True)
class ValidationContext:
    number: int
    current_status: str
    current_release: str
    body: str
    active_releases: tuple[str, ...] = ()


class WorkflowStatus(Enum):
    BACKLOG = "backlog"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    DONE = "done"
    OTHER = "other"

    @classmethod
    def from_value(cls, value: str | None) -> WorkflowStatus:
        if not value:
            return cls.OTHER
        normalized = "_".join(value.strip().casefold().replace("-", " ").split())
        for member in cls:
            if member.value == normalized:
                return member
        return cls.OTHER

    @property
    def requires_completed_work(self) -> bool:
        return self in (WorkflowStatus.IN_REVIEW, WorkflowStatus.DONE)

    @property
    def is_active(self) -> bool:
        return self in (WorkflowStatus.READY, WorkflowStatus.IN_PROGRESS)


class ChangeKind(Enum):
    ASSIGN = "assign"
    BACKLOG = "backlog"


__all__ = [
    "BatchUpdateResult",
    "ChangeKind",
    "FieldOption",
    "FieldUpdate",
    "FieldValue",
    "HierarchyNode",
    "Issue",
    "IssueRef",
    "PendingChange",
    "Project",
    "ProjectField",
    "ProjectItem",
    "SubIssue",
    "ValidationContext",
    "WorkflowStatus",
]
