"""GitHub Projects (v2) tracker client.

``TrackerClient`` is the capability boundary the move engine talks to;
``GitHubProjectsClient`` is the production implementation over the GraphQL
API using ``requests``. Tests substitute an in-memory fake.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol

import requests

from .models import (
    BatchUpdateResult,
    FieldOption,
    FieldUpdate,
    FieldValue,
    Issue,
    IssueRef,
    Project,
    ProjectField,
    ProjectItem,
    SubIssue,
)
from .retry import run_with_retries

DEFAULT_GRAPHQL_URL = "https://api.github.com/graphql"
USER_AGENT = "issuecascade/0.1.0"
HTTP_ERROR_STATUS = 400
BATCH_MUTATION_SIZE = 50
PAGE_SIZE = 100
TOKEN_ENV_VARS = ("ISSUECASCADE_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN")


class GitHubAPIError(RuntimeError):
    """Raised when the GitHub GraphQL API returns an error."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.response_text = response_text
        self.retry_after = retry_after


@dataclass(frozen=True)
class ItemFilter:
    repository: str = ""  # owner/repo
    limit: int = 0


class TrackerClient(Protocol):
    def get_issue(self, owner: str, repo: str, number: int) -> Issue: ...

    def get_project(self, owner: str, number: int) -> Project: ...

    def get_project_fields(self, project_id: str) -> list[ProjectField]: ...

    def get_project_items(
        self, project_id: str, item_filter: ItemFilter | None = None
    ) -> list[ProjectItem]: ...

    def get_project_items_by_issues(
        self, project_id: str, refs: Sequence[IssueRef]
    ) -> list[ProjectItem]: ...

    def get_sub_issues_batch(
        self, owner: str, repo: str, numbers: Sequence[int]
    ) -> dict[int, list[SubIssue]]: ...

    def set_project_item_field(
        self, project_id: str, item_id: str, field_name: str, value: str
    ) -> None: ...

    def batch_update_project_item_fields(
        self,
        project_id: str,
        updates: Sequence[FieldUpdate],
        fields: Sequence[ProjectField],
    ) -> list[BatchUpdateResult]: ...

    def get_open_issues_by_label(self, owner: str, repo: str, label: str) -> list[Issue]: ...

    def add_label_to_issue(self, owner: str, repo: str, issue_id: str, label: str) -> None: ...

    def remove_label_from_issue(
        self, owner: str, repo: str, issue_id: str, label: str
    ) -> None: ...


def resolve_token(env: dict[str, str] | None = None) -> str | None:
    source = os.environ if env is None else env
    for name in TOKEN_ENV_VARS:
        value = source.get(name)
        if value:
            return value
    return None


_ISSUE_FIELDS = """
id
number
title
body
state
repository { name owner { login } }
"""

_FIELD_VALUES = """
fieldValues(first: 20) {
  nodes {
    ... on ProjectV2ItemFieldSingleSelectValue { name field { ... on ProjectV2FieldCommon { name } } }
    ... on ProjectV2ItemFieldTextValue { text field { ... on ProjectV2FieldCommon { name } } }
    ... on ProjectV2ItemFieldNumberValue { number field { ... on ProjectV2FieldCommon { name } } }
    ... on ProjectV2ItemFieldDateValue { date field { ... on ProjectV2FieldCommon { name } } }
  }
}
"""

_PROJECT_QUERY = """
query($owner: String!, $number: Int!) {
  %s(login: $owner) { projectV2(number: $number) { id number title url } }
}
"""

_FIELDS_QUERY = """
query($projectId: ID!, $cursor: String) {
  node(id: $projectId) {
    ... on ProjectV2 {
      fields(first: 100, after: $cursor) {
        nodes {
          ... on ProjectV2FieldCommon { id name dataType }
          ... on ProjectV2SingleSelectField { options { id name } }
        }
        pageInfo { hasNextPage endCursor }
      }
    }
  }
}
"""

_ITEMS_QUERY = (
    """
query($projectId: ID!, $cursor: String) {
  node(id: $projectId) {
    ... on ProjectV2 {
      items(first: 100, after: $cursor) {
        nodes {
          id
          content { ... on Issue { %s } }
          %s
        }
        pageInfo { hasNextPage endCursor }
      }
    }
  }
}
"""
    % (_ISSUE_FIELDS, _FIELD_VALUES)
)

_ISSUE_QUERY = (
    """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) { issue(number: $number) { %s } }
}
"""
    % _ISSUE_FIELDS
)

_LABELLED_ISSUES_QUERY = (
    """
query($owner: String!, $repo: String!, $label: String!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    issues(first: 100, after: $cursor, states: OPEN, labels: [$label]) {
      nodes { %s }
      pageInfo { hasNextPage endCursor }
    }
  }
}
"""
    % _ISSUE_FIELDS
)

_LABEL_QUERY = """
query($owner: String!, $repo: String!, $label: String!) {
  repository(owner: $owner, name: $repo) { id label(name: $label) { id } }
}
"""

_CREATE_LABEL = """
mutation($input: CreateLabelInput!) { createLabel(input: $input) { label { id } } }
"""

_ADD_LABELS = """
mutation($input: AddLabelsToLabelableInput!) {
  addLabelsToLabelable(input: $input) { clientMutationId }
}
"""

_REMOVE_LABELS = """
mutation($input: RemoveLabelsFromLabelableInput!) {
  removeLabelsFromLabelable(input: $input) { clientMutationId }
}
"""

_UPDATE_FIELD = """
mutation($input: UpdateProjectV2ItemFieldValueInput!) {
  updateProjectV2ItemFieldValue(input: $input) { projectV2Item { id } }
}
"""

_CLEAR_FIELD = """
mutation($input: ClearProjectV2ItemFieldValueInput!) {
  clearProjectV2ItemFieldValue(input: $input) { projectV2Item { id } }
}
"""


def _issue_from_payload(payload: dict[str, Any]) -> Issue:
    repository = payload.get("repository") or {}
    owner = (repository.get("owner") or {}).get("login", "")
    return Issue(
        id=str(payload.get("id", "")),
        number=int(payload.get("number", 0)),
        title=str(payload.get("title") or ""),
        body=str(payload.get("body") or ""),
        state=str(payload.get("state") or "OPEN"),
        owner=str(owner or ""),
        repo=str(repository.get("name") or ""),
    )


def _field_values_from_payload(payload: dict[str, Any]) -> list[FieldValue]:
    out: list[FieldValue] = []
    for node in (payload.get("fieldValues") or {}).get("nodes") or []:
        if not isinstance(node, dict):
            continue
        name = (node.get("field") or {}).get("name")
        if not name:
            continue
        for key in ("name", "text", "date", "number"):
            if node.get(key) is not None:
                raw = node[key]
                if isinstance(raw, float) and raw.is_integer():
                    raw = int(raw)
                out.append(FieldValue(str(name), str(raw)))
                break
    return out


def _item_from_payload(payload: dict[str, Any]) -> ProjectItem | None:
    content = payload.get("content")
    if not isinstance(content, dict) or not content.get("number"):
        return None  # draft issues and pull requests carry no issue content
    return ProjectItem(
        item_id=str(payload.get("id", "")),
        issue=_issue_from_payload(content),
        field_values=_field_values_from_payload(payload),
    )


def _field_from_payload(payload: dict[str, Any]) -> ProjectField | None:
    field_id = payload.get("id")
    name = payload.get("name")
    if not field_id or not name:
        return None
    options = tuple(
        FieldOption(str(opt.get("id")), str(opt.get("name")))
        for opt in payload.get("options") or []
        if isinstance(opt, dict) and opt.get("id") and opt.get("name")
    )
    return ProjectField(
        id=str(field_id),
        name=str(name),
        data_type=str(payload.get("dataType") or ""),
        options=options,
    )


def find_field(fields: Iterable[ProjectField], name: str) -> ProjectField | None:
    candidates = list(fields)
    for f in candidates:
        if f.name == name:
            return f
    folded = name.casefold()
    for f in candidates:
        if f.name.casefold() == folded:
            return f
    return None


def find_option(project_field: ProjectField, value: str) -> FieldOption | None:
    for opt in project_field.options:
        if opt.name == value:
            return opt
    folded = value.casefold()
    for opt in project_field.options:
        if opt.name.casefold() == folded:
            return opt
    return None


def field_input_value(project_field: ProjectField, value: str) -> dict[str, Any]:
    """Build the ProjectV2FieldValue payload; raises ValueError for bad values."""
    data_type = project_field.data_type
    if data_type == "SINGLE_SELECT":
        opt = find_option(project_field, value)
        if opt is None:
            raise ValueError(f"option {value!r} not found for field {project_field.name!r}")
        return {"singleSelectOptionId": opt.id}
    if data_type == "TEXT":
        return {"text": value}
    if data_type == "NUMBER":
        try:
            return {"number": float(value)}
        except ValueError as exc:
            raise ValueError(f"invalid number value: {value}") from exc
    if data_type == "DATE":
        try:
            date.fromisoformat(value)
        except ValueError as exc:
            raise ValueError(f"invalid date format (expected YYYY-MM-DD): {value}") from exc
        return {"date": value}
    raise ValueError(f"unsupported field type: {data_type}")


def _alias_errors(payload: dict[str, Any]) -> tuple[dict[str, str], str]:
    by_alias: dict[str, str] = {}
    first = ""
    for err in payload.get("errors") or []:
        if not isinstance(err, dict):
            continue
        message = str(err.get("message") or "unknown error")
        first = first or message
        path = err.get("path") or []
        if path and isinstance(path[0], str) and path[0] not in by_alias:
            by_alias[path[0]] = message
    return by_alias, first


@dataclass
class GitHubProjectsClient:
    """GraphQL client for the project operations the move engine needs."""

    token: str
    graphql_url: str = DEFAULT_GRAPHQL_URL
    session: requests.Session | None = None
    timeout: float = 30.0
    _session: requests.Session = field(init=False, repr=False)
    _fields_cache: dict[str, list[ProjectField]] = field(
        init=False, repr=False, default_factory=dict
    )

    def __post_init__(self) -> None:  # pragma: no cover - simple wiring
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Authorization", f"Bearer {self.token}")
        self._session.headers.setdefault("User-Agent", USER_AGENT)
        self._session.headers.setdefault("GraphQL-Features", "issue_types,sub_issues")

    # ---- transport ----------------------------------------------------
    def _post(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        payload = {"query": query, "variables": variables}

        def _run() -> dict[str, Any]:
            response = self._session.post(
                self.graphql_url,
                json=payload,
                headers=self._session.headers,
                timeout=self.timeout,
            )
            if response.status_code >= HTTP_ERROR_STATUS:
                retry_after = response.headers.get("Retry-After")
                raise GitHubAPIError(
                    f"GitHub GraphQL request failed with {response.status_code}",
                    status=response.status_code,
                    response_text=response.text,
                    retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                )
            data = response.json()
            if not isinstance(data, dict):
                raise GitHubAPIError("unexpected GraphQL response", response_text=response.text)
            for err in data.get("errors") or []:
                if isinstance(err, dict) and err.get("type") == "RATE_LIMITED":
                    raise GitHubAPIError(
                        f"rate limited: {err.get('message', '')}",
                        status=response.status_code,
                        response_text=response.text,
                    )
            return data

        return run_with_retries(_run)

    def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        data = self._post(query, variables or {})
        if data.get("errors"):
            messages = "; ".join(
                str(e.get("message", e)) if isinstance(e, dict) else str(e)
                for e in data["errors"]
            )
            raise GitHubAPIError(f"GraphQL query failed: {messages}")
        return data.get("data") or {}

    def _paginate(
        self, query: str, variables: dict[str, Any], path: Sequence[str]
    ) -> list[dict[str, Any]]:
        nodes: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            data: Any = self.graphql(query, {**variables, "cursor": cursor})
            for key in path:
                data = (data or {}).get(key)
            if not isinstance(data, dict):
                break
            nodes.extend(n for n in data.get("nodes") or [] if isinstance(n, dict))
            page = data.get("pageInfo") or {}
            if not page.get("hasNextPage"):
                break
            cursor = page.get("endCursor")
        return nodes

    # ---- queries ------------------------------------------------------
    def get_issue(self, owner: str, repo: str, number: int) -> Issue:
        data = self.graphql(_ISSUE_QUERY, {"owner": owner, "repo": repo, "number": number})
        payload = (data.get("repository") or {}).get("issue")
        if not isinstance(payload, dict):
            raise GitHubAPIError(f"issue {owner}/{repo}#{number} not found", status=404)
        return _issue_from_payload(payload)

    def get_project(self, owner: str, number: int) -> Project:
        errors: list[str] = []
        for kind in ("user", "organization"):
            try:
                data = self.graphql(_PROJECT_QUERY % kind, {"owner": owner, "number": number})
            except GitHubAPIError as exc:
                errors.append(str(exc))
                continue
            payload = (data.get(kind) or {}).get("projectV2")
            if isinstance(payload, dict) and payload.get("id"):
                return Project(
                    id=str(payload["id"]),
                    number=int(payload.get("number", number)),
                    title=str(payload.get("title") or ""),
                    url=str(payload.get("url") or ""),
                )
        detail = f": {'; '.join(errors)}" if errors else ""
        raise GitHubAPIError(f"project {owner}#{number} not found{detail}", status=404)

    def get_project_fields(self, project_id: str) -> list[ProjectField]:
        nodes = self._paginate(_FIELDS_QUERY, {"projectId": project_id}, ("node", "fields"))
        fields = [f for f in (_field_from_payload(n) for n in nodes) if f is not None]
        self._fields_cache[project_id] = fields
        return fields

    def get_project_items(
        self, project_id: str, item_filter: ItemFilter | None = None
    ) -> list[ProjectItem]:
        nodes = self._paginate(_ITEMS_QUERY, {"projectId": project_id}, ("node", "items"))
        items: list[ProjectItem] = []
        for node in nodes:
            item = _item_from_payload(node)
            if item is None:
                continue
            if item_filter and item_filter.repository:
                if item.ref.repo_key.casefold() != item_filter.repository.casefold():
                    continue
            items.append(item)
            if item_filter and item_filter.limit and len(items) >= item_filter.limit:
                break
        return items

    def get_project_items_by_issues(
        self, project_id: str, refs: Sequence[IssueRef]
    ) -> list[ProjectItem]:
        if not refs:
            return []
        decls: list[str] = []
        parts: list[str] = []
        variables: dict[str, Any] = {}
        for i, ref in enumerate(refs):
            decls.append(f"$o{i}: String!, $r{i}: String!, $n{i}: Int!")
            parts.append(
                f"i{i}: repository(owner: $o{i}, name: $r{i}) {{"
                f" issue(number: $n{i}) {{ {_ISSUE_FIELDS}"
                " projectItems(first: 20) { nodes { id project { id }"
                f" {_FIELD_VALUES} }} }} }} }}"
            )
            variables.update({f"o{i}": ref.owner, f"r{i}": ref.repo, f"n{i}": int(ref.number)})
        query = f"query({', '.join(decls)}) {{ " + "\n".join(parts) + " }"
        data = self.graphql(query, variables)
        items: list[ProjectItem] = []
        for i in range(len(refs)):
            issue_payload = (data.get(f"i{i}") or {}).get("issue")
            if not isinstance(issue_payload, dict):
                continue
            issue = _issue_from_payload(issue_payload)
            for node in (issue_payload.get("projectItems") or {}).get("nodes") or []:
                if (node.get("project") or {}).get("id") == project_id:
                    items.append(
                        ProjectItem(
                            item_id=str(node.get("id", "")),
                            issue=issue,
                            field_values=_field_values_from_payload(node),
                        )
                    )
                    break
        return items

    def get_sub_issues_batch(
        self, owner: str, repo: str, numbers: Sequence[int]
    ) -> dict[int, list[SubIssue]]:
        if not numbers:
            return {}
        parts = [
            f"i{i}: issue(number: $n{i}) {{ subIssues(first: 50) {{ nodes {{"
            " id number title state repository { name owner { login } } } } }"
            for i in range(len(numbers))
        ]
        decls = "".join(f", $n{i}: Int!" for i in range(len(numbers)))
        query = (
            f"query($owner: String!, $repo: String!{decls}) {{"
            " repository(owner: $owner, name: $repo) { " + "\n".join(parts) + " } }"
        )
        variables: dict[str, Any] = {"owner": owner, "repo": repo}
        variables.update({f"n{i}": int(n) for i, n in enumerate(numbers)})
        data = self.graphql(query, variables)
        repository = data.get("repository") or {}
        result: dict[int, list[SubIssue]] = {}
        for i, number in enumerate(numbers):
            nodes = ((repository.get(f"i{i}") or {}).get("subIssues") or {}).get("nodes") or []
            children: list[SubIssue] = []
            for node in nodes:
                if not isinstance(node, dict):
                    continue
                issue = _issue_from_payload(node)
                children.append(
                    SubIssue(
                        id=issue.id,
                        number=issue.number,
                        title=issue.title,
                        state=issue.state,
                        owner=issue.owner,
                        repo=issue.repo,
                    )
                )
            result[number] = children
        return result

    def get_open_issues_by_label(self, owner: str, repo: str, label: str) -> list[Issue]:
        nodes = self._paginate(
            _LABELLED_ISSUES_QUERY,
            {"owner": owner, "repo": repo, "label": label},
            ("repository", "issues"),
        )
        return [_issue_from_payload(n) for n in nodes]

    # ---- mutations ----------------------------------------------------
    def _fields_for(self, project_id: str) -> list[ProjectField]:
        cached = self._fields_cache.get(project_id)
        return cached if cached is not None else self.get_project_fields(project_id)

    def set_project_item_field(
        self, project_id: str, item_id: str, field_name: str, value: str
    ) -> None:
        project_field = find_field(self._fields_for(project_id), field_name)
        if project_field is None:
            raise GitHubAPIError(f"field {field_name!r} not found in project")
        base = {"projectId": project_id, "itemId": item_id, "fieldId": project_field.id}
        if value == "":
            self.graphql(_CLEAR_FIELD, {"input": base})
            return
        try:
            field_value = field_input_value(project_field, value)
        except ValueError as exc:
            raise GitHubAPIError(str(exc)) from exc
        self.graphql(_UPDATE_FIELD, {"input": {**base, "value": field_value}})

    def batch_update_project_item_fields(
        self,
        project_id: str,
        updates: Sequence[FieldUpdate],
        fields: Sequence[ProjectField],
    ) -> list[BatchUpdateResult]:
        """Apply every update through aliased mutations, one request per chunk.

        Results come back in submission order. Updates that fail local
        validation (unknown field or option, malformed number/date) are
        reported as failed results without being sent. A transport failure
        for any chunk raises.
        """
        results: list[BatchUpdateResult | None] = [None] * len(updates)
        prepared: list[tuple[int, FieldUpdate, ProjectField, dict[str, Any] | None]] = []
        for idx, update in enumerate(updates):
            project_field = find_field(fields, update.field_name)
            if project_field is None:
                results[idx] = BatchUpdateResult(
                    update.item_id,
                    update.field_name,
                    False,
                    f"field {update.field_name!r} not found in project",
                )
                continue
            if update.is_clear:
                prepared.append((idx, update, project_field, None))
                continue
            try:
                value = field_input_value(project_field, update.value)
            except ValueError as exc:
                results[idx] = BatchUpdateResult(update.item_id, update.field_name, False, str(exc))
                continue
            prepared.append((idx, update, project_field, value))

        for start in range(0, len(prepared), BATCH_MUTATION_SIZE):
            chunk = prepared[start : start + BATCH_MUTATION_SIZE]
            decls: list[str] = []
            parts: list[str] = []
            variables: dict[str, Any] = {}
            for n, (_, update, project_field, value) in enumerate(chunk):
                base = {"projectId": project_id, "itemId": update.item_id, "fieldId": project_field.id}
                if value is None:
                    decls.append(f"$input{n}: ClearProjectV2ItemFieldValueInput!")
                    parts.append(
                        f"u{n}: clearProjectV2ItemFieldValue(input: $input{n}) {{ projectV2Item {{ id }} }}"
                    )
                    variables[f"input{n}"] = base
                else:
                    decls.append(f"$input{n}: UpdateProjectV2ItemFieldValueInput!")
                    parts.append(
                        f"u{n}: updateProjectV2ItemFieldValue(input: $input{n}) {{ projectV2Item {{ id }} }}"
                    )
                    variables[f"input{n}"] = {**base, "value": value}
            mutation = f"mutation BatchUpdate({', '.join(decls)}) {{ {' '.join(parts)} }}"
            payload = self._post(mutation, variables)
            data = payload.get("data") or {}
            by_alias, first_error = _alias_errors(payload)
            for n, (idx, update, _, _) in enumerate(chunk):
                alias = f"u{n}"
                error = by_alias.get(alias, "")
                if not error and data.get(alias) is None and first_error:
                    error = first_error
                results[idx] = BatchUpdateResult(update.item_id, update.field_name, not error, error)
        return [r for r in results if r is not None]

    def _label_ids(self, owner: str, repo: str, label: str) -> tuple[str, str]:
        data = self.graphql(_LABEL_QUERY, {"owner": owner, "repo": repo, "label": label})
        repository = data.get("repository") or {}
        return str(repository.get("id") or ""), str((repository.get("label") or {}).get("id") or "")

    def add_label_to_issue(self, owner: str, repo: str, issue_id: str, label: str) -> None:
        repo_id, label_id = self._label_ids(owner, repo, label)
        if not label_id:
            if not repo_id:
                raise GitHubAPIError(f"repository {owner}/{repo} not found", status=404)
            created = self.graphql(
                _CREATE_LABEL,
                {"input": {"repositoryId": repo_id, "name": label, "color": "ededed"}},
            )
            label_id = str(((created.get("createLabel") or {}).get("label") or {}).get("id") or "")
            if not label_id:
                raise GitHubAPIError(f"failed to create label {label!r}")
        self.graphql(_ADD_LABELS, {"input": {"labelableId": issue_id, "labelIds": [label_id]}})

    def remove_label_from_issue(
        self, owner: str, repo: str, issue_id: str, label: str
    ) -> None:
        _, label_id = self._label_ids(owner, repo, label)
        if not label_id:
            raise GitHubAPIError(f"label {label!r} not found", status=404)
        self.graphql(_REMOVE_LABELS, {"input": {"labelableId": issue_id, "labelIds": [label_id]}})


__all__ = [
    "BATCH_MUTATION_SIZE",
    "GitHubAPIError",
    "GitHubProjectsClient",
    "ItemFilter",
    "TrackerClient",
    "field_input_value",
    "find_field",
    "find_option",
    "resolve_token",
]
