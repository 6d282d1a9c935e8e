import json
from dataclasses import dataclass, field
from typing import Any

import pytest

from issuecascade.github_client import (
    GitHubAPIError,
    GitHubProjectsClient,
    ItemFilter,
    field_input_value,
    resolve_token,
)
from issuecascade.models import FieldUpdate, IssueRef, ProjectField

from fakes import PROJECT_ID, default_fields


@dataclass
class _DummyResponse:
    status_code: int
    payload: Any
    headers: dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        return self.payload

    @property
    def text(self) -> str:
        return json.dumps(self.payload)


class _DummySession:
    def __init__(self, responses: list[_DummyResponse]):
        self._responses = responses
        self.request_log: list[dict[str, Any]] = []
        self.headers: dict[str, str] = {}

    def post(
        self,
        url: str,
        *,
        json: Any | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> _DummyResponse:
        self.request_log.append({"url": url, "json": json, "headers": headers})
        if not self._responses:
            raise AssertionError("No response queued for request")
        return self._responses.pop(0)

    @property
    def queries(self) -> list[str]:
        return [entry["json"]["query"] for entry in self.request_log]

    @property
    def variables(self) -> list[dict[str, Any]]:
        return [entry["json"]["variables"] for entry in self.request_log]


def _ok(data: Any, errors: list[dict[str, Any]] | None = None) -> _DummyResponse:
    payload: dict[str, Any] = {"data": data}
    if errors:
        payload["errors"] = errors
    return _DummyResponse(200, payload)


def _client(responses: list[_DummyResponse]) -> tuple[GitHubProjectsClient, _DummySession]:
    session = _DummySession(responses)
    return GitHubProjectsClient(token="tkn", session=session), session  # type: ignore[arg-type]


def test_session_headers_enable_sub_issues():
    _, session = _client([])
    assert session.headers["Authorization"] == "Bearer tkn"
    assert session.headers["GraphQL-Features"] == "issue_types,sub_issues"


def test_batch_update_uses_aliases_and_maps_errors():
    client, session = _client(
        [
            _ok(
                {"u0": {"projectV2Item": {"id": "PVTI_1"}}, "u1": None},
                errors=[{"message": "item is archived", "path": ["u1"]}],
            )
        ]
    )
    updates = [
        FieldUpdate("PVTI_1", "Status", "done"),
        FieldUpdate("PVTI_2", "Branch", ""),
        FieldUpdate("PVTI_3", "Priority", "P9"),
    ]
    results = client.batch_update_project_item_fields(PROJECT_ID, updates, default_fields())

    assert [(r.item_id, r.success) for r in results] == [
        ("PVTI_1", True),
        ("PVTI_2", False),
        ("PVTI_3", False),
    ]
    assert results[1].error == "item is archived"
    assert "not found" in results[2].error

    assert len(session.request_log) == 1
    query = session.queries[0]
    assert "u0: updateProjectV2ItemFieldValue(input: $input0)" in query
    assert "u1: clearProjectV2ItemFieldValue(input: $input1)" in query
    assert "u2" not in query
    variables = session.variables[0]
    assert variables["input0"]["value"] == {"singleSelectOptionId": "opt-done"}
    assert variables["input1"] == {"projectId": PROJECT_ID, "itemId": "PVTI_2", "fieldId": "F_branch"}


def test_batch_update_unattributed_error_fails_missing_aliases():
    client, _ = _client([_ok({"u0": {"projectV2Item": {"id": "PVTI_1"}}, "u1": None}, errors=[{"message": "boom"}])])
    updates = [FieldUpdate("PVTI_1", "Branch", "v1"), FieldUpdate("PVTI_2", "Branch", "v1")]
    results = client.batch_update_project_item_fields(PROJECT_ID, updates, default_fields())
    assert [r.success for r in results] == [True, False]
    assert results[1].error == "boom"


def test_batch_update_is_chunked():
    client, session = _client([_ok({}), _ok({}), _ok({})])
    updates = [FieldUpdate(f"PVTI_{n}", "Branch", "v1") for n in range(120)]
    results = client.batch_update_project_item_fields(PROJECT_ID, updates, default_fields())
    assert len(results) == 120
    assert all(r.success for r in results)
    sizes = [len(v) for v in session.variables]
    assert sizes == [50, 50, 20]


def test_fields_are_paginated():
    page_one = {
        "node": {
            "fields": {
                "nodes": [
                    {
                        "id": "F_status",
                        "name": "Status",
                        "dataType": "SINGLE_SELECT",
                        "options": [{"id": "o1", "name": "Ready"}],
                    }
                ],
                "pageInfo": {"hasNextPage": True, "endCursor": "c1"},
            }
        }
    }
    page_two = {
        "node": {
            "fields": {
                "nodes": [{"id": "F_branch", "name": "Branch", "dataType": "TEXT"}, {}],
                "pageInfo": {"hasNextPage": False, "endCursor": None},
            }
        }
    }
    client, session = _client([_ok(page_one), _ok(page_two)])
    fields = client.get_project_fields(PROJECT_ID)
    assert [f.name for f in fields] == ["Status", "Branch"]
    assert fields[0].option_names() == ["Ready"]
    assert session.variables[0]["cursor"] is None
    assert session.variables[1]["cursor"] == "c1"


def test_get_project_falls_back_to_organization():
    client, session = _client(
        [
            _ok({"user": None}, errors=[{"message": "Could not resolve to a User"}]),
            _ok({"organization": {"projectV2": {"id": "PVT_9", "number": 3, "title": "Board"}}}),
        ]
    )
    project = client.get_project("acme", 3)
    assert project.id == "PVT_9"
    assert "user(login: $owner)" in session.queries[0]
    assert "organization(login: $owner)" in session.queries[1]


def test_get_project_not_found():
    client, _ = _client([_ok({"user": None}), _ok({"organization": None})])
    with pytest.raises(GitHubAPIError) as excinfo:
        client.get_project("acme", 3)
    assert excinfo.value.status == 404


def test_http_error_raises_without_retry():
    client, session = _client([_DummyResponse(401, {"message": "Bad credentials"})])
    with pytest.raises(GitHubAPIError) as excinfo:
        client.get_project_fields(PROJECT_ID)
    assert excinfo.value.status == 401
    assert len(session.request_log) == 1


def test_rate_limited_response_is_retried(monkeypatch):
    monkeypatch.setenv("ISSUECASCADE_RETRY_MAX_SLEEP", "0")
    client, session = _client(
        [
            _DummyResponse(200, {"errors": [{"type": "RATE_LIMITED", "message": "slow down"}]}),
            _ok({"repository": {"issue": {"id": "I_1", "number": 1, "title": "One"}}}),
        ]
    )
    issue = client.get_issue("acme", "widgets", 1)
    assert issue.title == "One"
    assert len(session.request_log) == 2


def test_items_by_issues_picks_item_of_this_project():
    issue = {
        "id": "I_1",
        "number": 1,
        "title": "One",
        "state": "OPEN",
        "repository": {"name": "widgets", "owner": {"login": "acme"}},
        "projectItems": {
            "nodes": [
                {"id": "PVTI_other", "project": {"id": "PVT_other"}},
                {
                    "id": "PVTI_1",
                    "project": {"id": PROJECT_ID},
                    "fieldValues": {"nodes": [{"name": "Ready", "field": {"name": "Status"}}]},
                },
            ]
        },
    }
    client, session = _client([_ok({"i0": {"issue": issue}, "i1": {"issue": None}})])
    items = client.get_project_items_by_issues(
        PROJECT_ID, [IssueRef("acme", "widgets", 1), IssueRef("acme", "gadgets", 2)]
    )
    assert [i.item_id for i in items] == ["PVTI_1"]
    assert items[0].field_value("status") == "Ready"
    assert session.variables[0] == {
        "o0": "acme",
        "r0": "widgets",
        "n0": 1,
        "o1": "acme",
        "r1": "gadgets",
        "n1": 2,
    }


def test_project_items_skip_drafts_and_filter_repository():
    def node(item_id, number, repo):
        content = {"id": f"I_{number}", "number": number, "repository": {"name": repo, "owner": {"login": "acme"}}}
        return {"id": item_id, "content": content, "fieldValues": {"nodes": [{"number": 3.0, "field": {"name": "Points"}}]}}

    page = {
        "node": {
            "items": {
                "nodes": [node("A", 1, "widgets"), {"id": "draft", "content": {}}, node("B", 2, "gadgets")],
                "pageInfo": {"hasNextPage": False},
            }
        }
    }
    client, _ = _client([_ok(page)])
    items = client.get_project_items(PROJECT_ID, ItemFilter(repository="acme/widgets"))
    assert [i.item_id for i in items] == ["A"]
    assert items[0].field_value("Points") == "3"


def test_sub_issues_batch_one_request():
    child = {
        "id": "I_5",
        "number": 5,
        "title": "Child",
        "state": "CLOSED",
        "repository": {"name": "gadgets", "owner": {"login": "acme"}},
    }
    client, session = _client(
        [_ok({"repository": {"i0": {"subIssues": {"nodes": [child]}}, "i1": {"subIssues": {"nodes": []}}}})]
    )
    result = client.get_sub_issues_batch("acme", "widgets", [2, 3])
    assert list(result) == [2, 3]
    assert [(s.number, s.repo, s.state) for s in result[2]] == [(5, "gadgets", "CLOSED")]
    assert result[3] == []
    assert len(session.request_log) == 1
    assert session.variables[0] == {"owner": "acme", "repo": "widgets", "n0": 2, "n1": 3}


def test_set_field_clears_empty_value():
    fields_page = {
        "node": {
            "fields": {
                "nodes": [{"id": "F_branch", "name": "Branch", "dataType": "TEXT"}],
                "pageInfo": {"hasNextPage": False},
            }
        }
    }
    client, session = _client([_ok(fields_page), _ok({}), _ok({})])
    client.set_project_item_field(PROJECT_ID, "PVTI_1", "branch", "")
    client.set_project_item_field(PROJECT_ID, "PVTI_1", "Branch", "v2")
    assert "clearProjectV2ItemFieldValue" in session.queries[1]
    assert "updateProjectV2ItemFieldValue" in session.queries[2]
    assert session.variables[2]["input"]["value"] == {"text": "v2"}
    assert len(session.request_log) == 3


def test_add_label_creates_missing_label():
    client, session = _client(
        [
            _ok({"repository": {"id": "R_1", "label": None}}),
            _ok({"createLabel": {"label": {"id": "LA_1"}}}),
            _ok({"addLabelsToLabelable": {"clientMutationId": None}}),
        ]
    )
    client.add_label_to_issue("acme", "widgets", "I_1", "assigned")
    assert session.variables[1]["input"]["name"] == "assigned"
    assert session.variables[2]["input"] == {"labelableId": "I_1", "labelIds": ["LA_1"]}


def test_remove_missing_label_is_an_error():
    client, _ = _client([_ok({"repository": {"id": "R_1", "label": None}})])
    with pytest.raises(GitHubAPIError):
        client.remove_label_from_issue("acme", "widgets", "I_1", "assigned")


@pytest.mark.parametrize(
    ("name", "value", "expected"),
    [
        ("Branch", "v1", {"text": "v1"}),
        ("Status", "in review", {"singleSelectOptionId": "opt-in-review"}),
    ],
)
def test_field_input_value(name, value, expected):
    project_field = next(f for f in default_fields() if f.name == name)
    assert field_input_value(project_field, value) == expected


def test_field_input_value_rejects_bad_values():
    with pytest.raises(ValueError):
        field_input_value(ProjectField("F", "Points", "NUMBER"), "lots")
    with pytest.raises(ValueError):
        field_input_value(ProjectField("F", "Due", "DATE"), "19/10/2026")


def test_resolve_token_precedence():
    assert resolve_token({"GH_TOKEN": "c", "GITHUB_TOKEN": "b"}) == "b"
    assert resolve_token({"ISSUECASCADE_GITHUB_TOKEN": "a", "GITHUB_TOKEN": "b"}) == "a"
    assert resolve_token({}) is None
