"""The ``move`` command: bulk field updates across issues and their sub-issues.

Order of work is fixed: plan the fetch, collect hierarchies, validate every
affected item, preview or confirm, then resolve the field schema and apply
all updates in one batch. Anything that fails before the mutation step
aborts with nothing written; failures during and after it are reported
without undoing what was applied.
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from typing import TextIO

from .config import DEFAULT_DEPTH, CascadeConfig, parse_repo
from .errors import NoValidIssuesError, PlanningError, UsageError
from .github_client import TrackerClient
from .hierarchy import HierarchyCollector
from .labels import LabelSyncer
from .logging import StructuredLogger, get_logger
from .models import ChangeKind, FieldUpdate, HierarchyNode, PendingChange, ValidationContext
from .mutations import BatchMutationExecutor, MutationOutcome
from .planner import QueryPlanner, build_issue_refs
from .schema_cache import LEGACY_BRANCH_FIELD, FieldSchemaCache
from .ux import format_status, print_error, print_header, print_warning
from .validation import ValidationReport, WorkflowValidator, discover_active_releases

BRANCH_LABEL = "branch"
MICROSPRINT_LABEL = "microsprint"
CURRENT = "current"
BRANCH_TITLE_PREFIXES = ("Branch: ", "Release: ")
MICROSPRINT_TITLE_PREFIX = "Microsprint: "


@dataclass
class MoveOptions:
    issues: list[str]
    status: str = ""
    priority: str = ""
    branch: str = ""
    microsprint: str = ""
    backlog: bool = False
    recursive: bool = False
    depth: int = DEFAULT_DEPTH
    dry_run: bool = False
    yes: bool = False
    force: bool = False
    repo: str = ""

    def validate(self) -> None:
        if not self.issues:
            raise UsageError("at least one issue is required")
        if self.backlog and (self.branch or self.microsprint):
            raise UsageError("--backlog cannot be combined with --branch or --microsprint")
        if not (self.status or self.priority or self.branch or self.microsprint or self.backlog):
            raise UsageError(
                "no changes specified; use --status, --priority, --branch, "
                "--microsprint or --backlog"
            )
        if self.depth < 0:
            raise UsageError("--depth must not be negative")


@dataclass
class MoveResult:
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    dry_run: bool = False
    aborted: bool = False
    nodes: list[HierarchyNode] = field(default_factory=list)
    validation: ValidationReport | None = None
    outcome: MutationOutcome | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class _TargetValues:
    status: str = ""
    priority: str = ""
    branch: str = ""
    microsprint: str = ""
    clear: bool = False
    descriptions: list[str] = field(default_factory=list)


def distinct_nodes(nodes: list[HierarchyNode]) -> list[HierarchyNode]:
    """First occurrence of every item, in traversal order.

    Overlapping roots, repeated references and cyclic hierarchies reach the
    same item more than once; each item is validated, updated and counted once.
    """
    seen: set[str] = set()
    out: list[HierarchyNode] = []
    for node in nodes:
        key = node.item_id or node.ref.key
        if key in seen:
            continue
        seen.add(key)
        out.append(node)
    return out


def find_active_branch(titles: list[str]) -> str:
    for title in titles:
        for prefix in BRANCH_TITLE_PREFIXES:
            if title.startswith(prefix):
                return title[len(prefix) :]
    return ""


def find_active_microsprint(titles: list[str], today: date) -> str:
    prefix = f"{MICROSPRINT_TITLE_PREFIX}{today.isoformat()}-"
    for title in titles:
        if title.startswith(prefix):
            return title[len(MICROSPRINT_TITLE_PREFIX) :]
    return ""


class MoveCommand:
    def __init__(
        self,
        config: CascadeConfig,
        client: TrackerClient,
        *,
        out: TextIO | None = None,
        prompt: Callable[[str], str] = input,
        today: Callable[[], date] = date.today,
        logger: StructuredLogger | None = None,
    ):
        self.config = config
        self.client = client
        self._out = out
        self._prompt = prompt
        self._today = today
        self._logger = logger or get_logger()

    # ---- output -------------------------------------------------------
    @property
    def out(self) -> TextIO:
        return self._out or sys.stdout

    def _print(self, text: str = "") -> None:
        print(text, file=self.out)

    def _confirm(self, question: str) -> bool:
        answer = self._prompt(question)
        if answer.strip().lower() in ("y", "yes"):
            return True
        self._print("Aborted.")
        return False

    # ---- steps --------------------------------------------------------
    def _resolve_project_id(self) -> str:
        try:
            project = self.client.get_project(self.config.project_owner, self.config.project_number)
        except Exception as exc:
            raise PlanningError(f"failed to get project: {exc}") from exc
        return project.id

    def _collect(
        self, opts: MoveOptions, project_id: str, result: MoveResult
    ) -> list[HierarchyNode]:
        default_repo = parse_repo(opts.repo) if opts.repo else self.config.default_repository()
        refs, problems = build_issue_refs(opts.issues, default_repo)
        if not refs:
            raise NoValidIssuesError(problems)
        plan = QueryPlanner(self.client, project_id, self._logger).plan_and_fetch(
            refs, opts.recursive, problems
        )
        for problem in plan.problems:
            print_error(problem)

        nodes: list[HierarchyNode] = []
        collector = HierarchyCollector(self.client, plan.index(), self._logger)
        for root in plan.roots:
            nodes.append(HierarchyNode.from_item(root))
            if not opts.recursive:
                continue
            collected = collector.collect(root.ref, opts.depth)
            nodes.extend(collected.nodes)
            result.warnings.extend(collected.warnings)
        return nodes

    def _open_titles(self, node: HierarchyNode, label: str) -> list[str]:
        issues = self.client.get_open_issues_by_label(node.ref.owner, node.ref.repo, label)
        return [issue.title for issue in issues]

    def _resolve_values(self, opts: MoveOptions, first: HierarchyNode) -> _TargetValues:
        cfg = self.config
        values = _TargetValues()
        if opts.status:
            cfg.validate_field_value("status", opts.status)
            values.status = cfg.resolve_field_value("status", opts.status)
            values.descriptions.append(f"Status -> {values.status}")
        if opts.priority:
            cfg.validate_field_value("priority", opts.priority)
            values.priority = cfg.resolve_field_value("priority", opts.priority)
            values.descriptions.append(f"Priority -> {values.priority}")
        if opts.backlog:
            values.clear = True
            values.descriptions.append("Microsprint -> (cleared)")
            values.descriptions.append("Branch -> (cleared)")
        if opts.microsprint:
            if opts.microsprint == CURRENT:
                try:
                    titles = self._open_titles(first, MICROSPRINT_LABEL)
                except Exception as exc:
                    raise PlanningError(f"failed to get microsprint issues: {exc}") from exc
                values.microsprint = find_active_microsprint(titles, self._today())
                if not values.microsprint:
                    raise PlanningError("no active microsprint found")
            else:
                values.microsprint = opts.microsprint
            values.descriptions.append(f"Microsprint -> {values.microsprint}")
        if opts.branch:
            if opts.branch == CURRENT:
                try:
                    titles = self._open_titles(first, BRANCH_LABEL)
                except Exception as exc:
                    raise PlanningError(f"failed to get branch issues: {exc}") from exc
                values.branch = find_active_branch(titles)
                if not values.branch:
                    raise PlanningError("no active branch found")
            else:
                values.branch = opts.branch
            values.descriptions.append(f"Branch -> {values.branch}")
        return values

    def _validate(
        self, opts: MoveOptions, nodes: list[HierarchyNode], values: _TargetValues
    ) -> ValidationReport:
        validator = WorkflowValidator(self.config.is_workflow_framework(), force=opts.force)
        if not validator.enabled or not values.status:
            return ValidationReport()
        try:
            releases = discover_active_releases(
                self.client.get_open_issues_by_label(
                    nodes[0].ref.owner, nodes[0].ref.repo, BRANCH_LABEL
                )
            )
        except Exception as exc:
            self._logger.warning(f"could not discover active releases: {exc}")
            releases = []
        status_field = self.config.get_field_name("status", "Status")
        contexts = []
        for node in distinct_nodes(nodes):
            if not node.tracked:
                continue
            item = node.as_project_item()
            contexts.append(
                ValidationContext(
                    number=node.number,
                    current_status=item.field_value(status_field),
                    current_release=item.field_value("Branch") or item.field_value(LEGACY_BRANCH_FIELD),
                    body=node.body,
                    active_releases=tuple(releases),
                )
            )
        return validator.validate_all(contexts, values.status, values.branch)

    def _preview(
        self,
        opts: MoveOptions,
        nodes: list[HierarchyNode],
        values: _TargetValues,
        report: ValidationReport,
    ) -> None:
        if opts.dry_run:
            print_header("Dry run - no changes will be made", self.out)
            self._print()
        self._print(f"Issues to update ({len(distinct_nodes(nodes))}):")
        for node in nodes:
            indent = "  " * node.depth
            line = f"{indent}* #{node.number} - {node.title}"
            if not node.tracked:
                line += " (not in project, will skip)"
            elif opts.dry_run:
                failure = report.failure_for(node.number)
                if failure is not None:
                    line += f" [FAIL: {failure.message}]"
                elif report.bypass_for(node.number) is not None:
                    line += " [PASS with --force]"
            self._print(line)
        self._print()
        self._print("Changes to apply:")
        for desc in values.descriptions:
            self._print(f"  * {desc}")
        if not opts.dry_run:
            return
        self._print()
        if report.errors:
            self._print("Validation would FAIL:")
            for err in report.errors.errors:
                self._print(f"  - Issue #{err.item_number}: {err.message}")
            self._print()
            self._print("Fix all issues or use --force to bypass.")
        else:
            self._print("Validation: PASS")

    def _build_updates(
        self,
        project_id: str,
        schema: FieldSchemaCache,
        nodes: list[HierarchyNode],
        values: _TargetValues,
    ) -> list[FieldUpdate]:
        status_field = self.config.get_field_name("status", "Status")
        priority_field = self.config.get_field_name("priority", "Priority")
        microsprint_field = self.config.get_field_name("microsprint", "Microsprint")
        branch_field = schema.branch_field_name(project_id)

        # reject unknown single-select options before anything is written
        for field_name, value in (
            (status_field, values.status),
            (priority_field, values.priority),
            (microsprint_field, values.microsprint),
            (branch_field, values.branch),
        ):
            if not value:
                continue
            project_field = schema.find_field(project_id, field_name)
            if project_field is not None and project_field.data_type == "SINGLE_SELECT":
                schema.resolve_option(project_id, field_name, value)

        changes: dict[str, PendingChange] = {}
        for node in nodes:
            if not node.tracked or node.item_id in changes:
                continue
            change = changes[node.item_id] = PendingChange(node.item_id)
            if values.status:
                change.add(status_field, values.status)
            if values.priority:
                change.add(priority_field, values.priority)
            if values.microsprint:
                change.add(microsprint_field, values.microsprint)
            if values.branch:
                change.add(branch_field, values.branch)
            if values.clear:
                change.add(microsprint_field, "")
                change.add(branch_field, "")
        return [update for change in changes.values() for update in change.updates]

    # ---- entry point --------------------------------------------------
    def run(self, opts: MoveOptions) -> MoveResult:
        opts.validate()
        result = MoveResult(dry_run=opts.dry_run)
        project_id = self._resolve_project_id()
        nodes = self._collect(opts, project_id, result)
        result.nodes = nodes
        values = self._resolve_values(opts, nodes[0])

        report = self._validate(opts, nodes, values)
        result.validation = report
        if not opts.dry_run:
            report.raise_for_errors()
            if report.bypasses:
                print_warning("Warning: --force bypasses checkbox validation:", self.out)
                for bypass in report.bypasses:
                    self._print(f"  {bypass}")
                self._print()
                if not opts.yes and not self._confirm("Proceed anyway? [y/N]: "):
                    result.aborted = True
                    return result

        multi = len(opts.issues) > 1 or opts.recursive
        if multi or opts.dry_run:
            self._preview(opts, nodes, values, report)
            if opts.dry_run:
                return result
            if not opts.yes and not self._confirm(
                f"\nProceed with updating {len(distinct_nodes(nodes))} issues? [y/N]: "
            ):
                result.aborted = True
                return result
            self._print()

        schema = FieldSchemaCache(self.client, self._logger)
        updates = self._build_updates(project_id, schema, nodes, values)
        numbers = {node.item_id: node.number for node in nodes if node.tracked}
        executor = BatchMutationExecutor(self.client, schema, project_id, numbers, self._logger)
        outcome = executor.apply(updates)
        result.outcome = outcome
        for failure in outcome.failures:
            self._logger.warning(f"failed to set {failure.field_name} for #{failure.number}: {failure.reason}")

        labels = LabelSyncer(self.client, logger=self._logger)
        kind = ChangeKind.ASSIGN if values.branch else ChangeKind.BACKLOG if values.clear else None
        failed_ids = outcome.failed_item_ids()
        for node in distinct_nodes(nodes):
            indent = "  " * node.depth
            if not node.tracked:
                result.skipped += 1
                if multi:
                    self._print(f"{indent}Updating #{node.number}... {format_status('skipped', self.out)} (not in project)")
                continue
            if node.item_id in failed_ids:
                result.failed += 1
                if multi:
                    self._print(f"{indent}Updating #{node.number}... {format_status('failed', self.out)}")
                continue
            item = node.as_project_item()
            for update in outcome.applied:
                if update.item_id == node.item_id:
                    item.record_applied(update.field_name, update.value)
            if kind is not None:
                labels.sync_labels(item, kind)
            result.updated += 1
            if multi:
                self._print(f"{indent}Updating #{node.number}... {format_status('done', self.out)}")
            else:
                self._print(f"Updated issue #{node.number}: {node.title}")
                for desc in values.descriptions:
                    self._print(f"  * {desc}")
                self._print(f"https://github.com/{node.ref.owner}/{node.ref.repo}/issues/{node.number}")
        result.warnings.extend(labels.warnings)

        if multi:
            self._print()
            self._print(
                f"Summary: {result.updated} updated, {result.skipped} skipped, {result.failed} failed"
            )
        if self.config.is_workflow_framework() and report.bypasses and result.updated:
            self._print()
            print_warning("WARNING: Workflow rules may have been violated.", self.out)

        outcome.raise_for_failures()
        return result


__all__ = [
    "MoveCommand",
    "MoveOptions",
    "MoveResult",
    "distinct_nodes",
    "find_active_branch",
    "find_active_microsprint",
]
