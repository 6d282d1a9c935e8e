from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from .errors import MutationError, redact
from .github_client import TrackerClient
from .logging import StructuredLogger, get_logger
from .models import BatchUpdateResult, FieldUpdate
from .schema_cache import FieldSchemaCache


@dataclass(frozen=True)
class MutationFailure:
    item_id: str
    field_name: str
    number: int
    reason: str

    def __str__(self) -> str:
        return f"#{self.number} could not be updated: {self.reason}"


@dataclass
class MutationOutcome:
    applied: list[FieldUpdate] = field(default_factory=list)
    failures: list[MutationFailure] = field(default_factory=list)
    fell_back: bool = False

    @property
    def applied_count(self) -> int:
        return len(self.applied)

    def failed_item_ids(self) -> set[str]:
        return {f.item_id for f in self.failures}

    def raise_for_failures(self) -> None:
        if self.failures:
            raise MutationError([str(f) for f in self.failures], applied=self.applied_count)


class BatchMutationExecutor:
    """Applies field updates in one batch call, degrading to one call per update.

    The sequential path is taken only when the batch call itself fails or
    returns a result list that does not line up with what was submitted.
    Per-update failures reported by a successful batch are final.
    """

    def __init__(
        self,
        client: TrackerClient,
        schema: FieldSchemaCache,
        project_id: str,
        item_numbers: Mapping[str, int],
        logger: StructuredLogger | None = None,
    ):
        self._client = client
        self._schema = schema
        self._project_id = project_id
        self._numbers = item_numbers
        self._logger = logger or get_logger()

    def _failure(self, update: FieldUpdate, reason: str) -> MutationFailure:
        return MutationFailure(
            update.item_id, update.field_name, self._numbers.get(update.item_id, 0), redact(reason)
        )

    def apply(self, updates: Sequence[FieldUpdate]) -> MutationOutcome:
        outcome = MutationOutcome()
        if not updates:
            return outcome
        with self._logger.timed_operation("apply_updates", update_count=len(updates)):
            return self._apply_batch(updates, outcome)

    def _apply_batch(
        self, updates: Sequence[FieldUpdate], outcome: MutationOutcome
    ) -> MutationOutcome:
        fields = self._schema.get_fields(self._project_id)
        try:
            results = self._client.batch_update_project_item_fields(
                self._project_id, list(updates), fields
            )
        except Exception as exc:
            self._logger.warning(
                f"batch update failed, applying {len(updates)} updates individually: {redact(str(exc))}",
                update_count=len(updates),
            )
            return self._apply_sequentially(updates)
        if len(results) != len(updates):
            self._logger.warning(
                f"batch update returned {len(results)} results for {len(updates)} updates, "
                "applying individually",
                update_count=len(updates),
            )
            return self._apply_sequentially(updates)
        return self._collect(updates, results, outcome)

    def _collect(
        self,
        updates: Sequence[FieldUpdate],
        results: Sequence[BatchUpdateResult],
        outcome: MutationOutcome,
    ) -> MutationOutcome:
        for update, result in zip(updates, results):
            if result.success:
                outcome.applied.append(update)
            else:
                outcome.failures.append(self._failure(update, result.error or "unknown error"))
        self._logger.log_operation(
            "batch_update",
            applied=outcome.applied_count,
            failed=len(outcome.failures),
        )
        return outcome

    def _apply_sequentially(self, updates: Sequence[FieldUpdate]) -> MutationOutcome:
        outcome = MutationOutcome(fell_back=True)
        for update in updates:
            try:
                self._client.set_project_item_field(
                    self._project_id, update.item_id, update.field_name, update.value
                )
            except Exception as exc:
                outcome.failures.append(self._failure(update, str(exc)))
                continue
            outcome.applied.append(update)
        self._logger.log_operation(
            "sequential_update",
            applied=outcome.applied_count,
            failed=len(outcome.failures),
        )
        return outcome


__all__ = ["BatchMutationExecutor", "MutationFailure", "MutationOutcome"]
