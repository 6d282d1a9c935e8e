from __future__ import annotations

from .errors import redact
from .github_client import TrackerClient
from .logging import StructuredLogger, get_logger
from .models import ChangeKind, ProjectItem

ASSIGNED_LABEL = "assigned"


class LabelSyncer:
    """Keeps the ``assigned`` bookkeeping label in step with branch assignment.

    Labels are cosmetic; the project field is authoritative, so every
    failure here is logged and dropped.
    """

    def __init__(
        self,
        client: TrackerClient,
        label: str = ASSIGNED_LABEL,
        logger: StructuredLogger | None = None,
    ):
        self._client = client
        self.label = label
        self._logger = logger or get_logger()
        self.warnings: list[str] = []

    def sync_labels(self, item: ProjectItem, kind: ChangeKind) -> bool:
        if kind is ChangeKind.BACKLOG and not item.issue.is_open:
            return False
        try:
            if kind is ChangeKind.ASSIGN:
                self._client.add_label_to_issue(item.owner, item.repo, item.issue_id, self.label)
            else:
                self._client.remove_label_from_issue(item.owner, item.repo, item.issue_id, self.label)
        except Exception as exc:
            verb = "add" if kind is ChangeKind.ASSIGN else "remove"
            message = f"failed to {verb} '{self.label}' label on #{item.number}: {redact(str(exc))}"
            self.warnings.append(message)
            self._logger.warning(message, number=item.number)
            return False
        return True


__all__ = ["ASSIGNED_LABEL", "LabelSyncer"]
