import pytest

from issuecascade.errors import InvalidFieldValue, SchemaFetchError
from issuecascade.github_client import GitHubAPIError
from issuecascade.models import ProjectField
from issuecascade.schema_cache import FieldSchemaCache

from fakes import PROJECT_ID


def test_fields_are_fetched_once_per_project(fake_client):
    cache = FieldSchemaCache(fake_client)
    first = cache.get_fields(PROJECT_ID)
    second = cache.get_fields(PROJECT_ID)
    assert first is second
    assert fake_client.calls["get_project_fields"] == 1

    cache.get_fields("PVT_other")
    assert fake_client.calls["get_project_fields"] == 2


def test_fetch_failure_raises_schema_fetch_error(fake_client):
    fake_client.errors["get_project_fields"] = GitHubAPIError("boom", status=500)
    cache = FieldSchemaCache(fake_client)
    with pytest.raises(SchemaFetchError) as excinfo:
        cache.get_fields(PROJECT_ID)
    assert "boom" in str(excinfo.value)


def test_resolve_option(fake_client):
    cache = FieldSchemaCache(fake_client)
    assert cache.resolve_option(PROJECT_ID, "Status", "In Progress").id == "opt-in-progress"
    assert cache.resolve_option(PROJECT_ID, "status", "done").name == "Done"
    with pytest.raises(InvalidFieldValue) as excinfo:
        cache.resolve_option(PROJECT_ID, "Priority", "P9")
    assert "P0, P1, P2" in str(excinfo.value)


def test_branch_field_falls_back_to_release(fake_client):
    assert FieldSchemaCache(fake_client).branch_field_name(PROJECT_ID) == "Branch"

    fake_client.fields = [f for f in fake_client.fields if f.name != "Branch"]
    fake_client.fields.append(ProjectField("F_release", "Release", "TEXT"))
    assert FieldSchemaCache(fake_client).branch_field_name(PROJECT_ID) == "Release"
