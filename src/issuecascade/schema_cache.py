"""Per-invocation cache of project field metadata.

Field ids and single-select option ids are needed to build every mutation,
so they are fetched at most once per project for the lifetime of the cache.
"""

from __future__ import annotations

from .errors import InvalidFieldValue, SchemaError, SchemaFetchError
from .github_client import TrackerClient, find_field, find_option
from .logging import StructuredLogger, get_logger
from .models import FieldOption, ProjectField

BRANCH_FIELD = "Branch"
LEGACY_BRANCH_FIELD = "Release"


class FieldSchemaCache:
    def __init__(self, client: TrackerClient, logger: StructuredLogger | None = None):
        self._client = client
        self._logger = logger or get_logger()
        self._fields: dict[str, list[ProjectField]] = {}

    def get_fields(self, project_id: str) -> list[ProjectField]:
        cached = self._fields.get(project_id)
        if cached is not None:
            return cached
        try:
            fields = self._client.get_project_fields(project_id)
        except Exception as exc:
            raise SchemaFetchError(project_id, exc) from exc
        self._fields[project_id] = list(fields)
        self._logger.debug(
            f"cached {len(fields)} fields for project {project_id}",
            project_id=project_id,
            field_count=len(fields),
        )
        return self._fields[project_id]

    def find_field(self, project_id: str, name: str) -> ProjectField | None:
        return find_field(self.get_fields(project_id), name)

    def resolve_option(self, project_id: str, field_name: str, value: str) -> FieldOption:
        project_field = self.find_field(project_id, field_name)
        if project_field is None:
            raise SchemaError(f"field {field_name!r} not found in project")
        opt = find_option(project_field, value)
        if opt is None:
            raise InvalidFieldValue(field_name, value, project_field.option_names())
        return opt

    def branch_field_name(self, project_id: str) -> str:
        """Name of the branch field, falling back to the legacy "Release" field."""
        if self.find_field(project_id, BRANCH_FIELD) is not None:
            return BRANCH_FIELD
        if self.find_field(project_id, LEGACY_BRANCH_FIELD) is not None:
            return LEGACY_BRANCH_FIELD
        return BRANCH_FIELD


__all__ = ["BRANCH_FIELD", "LEGACY_BRANCH_FIELD", "FieldSchemaCache"]
