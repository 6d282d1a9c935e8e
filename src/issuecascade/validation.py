"""Workflow transition rules for projects that follow the IDPF framework.

Rules are evaluated per item in a fixed order and the first failure wins:

1. moving into review/done needs a non-empty body (never bypassable)
2. moving into review/done needs every checklist item checked (``--force``
   bypasses this one and records a :class:`ForceBypass`)
3. leaving backlog for ready/in progress needs a branch assignment that is
   one of the active releases, when any are known

Checklist items inside fenced or indented code blocks are examples, not
acceptance criteria, so they are ignored when counting.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from .errors import ValidationError, ValidationErrors
from .models import Issue, ValidationContext, WorkflowStatus

RELEASE_TITLE_PREFIXES = ("Release: ", "Branch: ")

_RE_CHECKBOX = re.compile(r"^\s*[-*+]\s+\[([ xX])\](?:\s+(.*))?$")
_RE_LIST_ITEM = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")
_RE_FENCE = re.compile(r"^\s{0,3}(`{3,}|~{3,})")
_RE_NESTED_FENCE = re.compile(r"^\s*(`{3,}|~{3,})")


@dataclass
class ChecklistCount:
    checked: int = 0
    unchecked: int = 0
    unchecked_items: list[str] = field(default_factory=list)


def _is_indented(line: str) -> bool:
    return line.startswith("    ") or line.startswith("\t")


def count_checklist(body: str) -> ChecklistCount:
    count = ChecklistCount()
    fence: str | None = None
    in_indented = False
    prev_blank = True
    in_list = False
    for line in body.splitlines():
        if fence is not None:
            m = _RE_NESTED_FENCE.match(line)
            if m and m.group(1)[0] == fence[0] and len(m.group(1)) >= len(fence):
                fence = None
            continue
        m = _RE_FENCE.match(line)
        if not m and in_list and not in_indented:
            # fences inside list items are indented with the item content
            m = _RE_NESTED_FENCE.match(line)
        if m:
            fence = m.group(1)
            in_indented = False
            continue
        blank = not line.strip()
        if blank:
            prev_blank = True
            continue
        if _is_indented(line):
            # an indented line after a list item is nested list content
            if in_indented or (prev_blank and not in_list):
                in_indented = True
                prev_blank = False
                continue
        else:
            in_indented = False
            in_list = bool(_RE_LIST_ITEM.match(line)) or (in_list and not prev_blank)
        prev_blank = False
        box = _RE_CHECKBOX.match(line)
        if not box:
            continue
        if box.group(1) == " ":
            count.unchecked += 1
            text = (box.group(2) or "").strip()
            if text:
                count.unchecked_items.append(f"  [ ] {text}")
        else:
            count.checked += 1
    return count


def is_body_empty(body: str) -> bool:
    return not body.strip()


def discover_active_releases(issues: Iterable[Issue]) -> list[str]:
    """Names of active releases from tracker issue titles.

    ``"Release: v1.2.0 (Phoenix)"`` yields ``v1.2.0`` and
    ``"Branch: release/v1.2"`` yields ``release/v1.2``.
    """
    releases: list[str] = []
    for issue in issues:
        for prefix in RELEASE_TITLE_PREFIXES:
            if issue.title.startswith(prefix):
                name = issue.title[len(prefix) :]
                idx = name.find(" (")
                if idx > 0:
                    name = name[:idx]
                name = name.strip()
                if name and name not in releases:
                    releases.append(name)
                break
    return releases


@dataclass(frozen=True)
class ForceBypass:
    number: int
    unchecked: int

    def __str__(self) -> str:
        return f"#{self.number} has {self.unchecked} unchecked checkbox(es)"


@dataclass
class ValidationReport:
    errors: ValidationErrors = field(default_factory=ValidationErrors)
    bypasses: list[ForceBypass] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.errors

    def failure_for(self, number: int) -> ValidationError | None:
        for err in self.errors.errors:
            if err.item_number == number:
                return err
        return None

    def bypass_for(self, number: int) -> ForceBypass | None:
        for bypass in self.bypasses:
            if bypass.number == number:
                return bypass
        return None

    def raise_for_errors(self) -> None:
        if self.errors:
            raise self.errors


class WorkflowValidator:
    def __init__(self, enabled: bool, *, force: bool = False):
        self.enabled = enabled
        self.force = force

    def check(
        self,
        ctx: ValidationContext,
        target_status: str,
        target_release: str = "",
    ) -> tuple[ValidationError | None, ForceBypass | None]:
        if not self.enabled or not target_status:
            return None, None
        target = WorkflowStatus.from_value(target_status)
        bypass: ForceBypass | None = None

        if target.requires_completed_work:
            if is_body_empty(ctx.body):
                return (
                    ValidationError(
                        ctx.number,
                        f"Empty body. Cannot move to '{target_status}' without issue content.",
                        f'Use: gh issue edit {ctx.number} --body "<description>"',
                    ),
                    None,
                )
            checklist = count_checklist(ctx.body)
            if checklist.unchecked:
                if not self.force:
                    items = "\n" + "\n".join(checklist.unchecked_items) if checklist.unchecked_items else ""
                    return (
                        ValidationError(
                            ctx.number,
                            f"Has {checklist.unchecked} unchecked checkbox(es):{items}",
                            f"Complete these items before moving to {target_status}, "
                            "or use --force to bypass.",
                        ),
                        None,
                    )
                bypass = ForceBypass(ctx.number, checklist.unchecked)

        current = WorkflowStatus.from_value(ctx.current_status)
        if current is WorkflowStatus.BACKLOG and target.is_active:
            release = target_release or ctx.current_release
            if not release:
                return (
                    ValidationError(
                        ctx.number,
                        "No release assignment. Cannot move from 'backlog' to "
                        f"'{target_status}' without a release.",
                        f'Use: issuecascade move {ctx.number} --branch "release/vX.Y.Z"',
                    ),
                    bypass,
                )
            active = ctx.active_releases
            if active and release.casefold() not in {r.casefold() for r in active}:
                return (
                    ValidationError(
                        ctx.number,
                        f'Release "{release}" not found in active releases.',
                        f"Available releases: {', '.join(active)}",
                    ),
                    bypass,
                )
        return None, bypass

    def validate_all(
        self,
        contexts: Iterable[ValidationContext],
        target_status: str,
        target_release: str = "",
    ) -> ValidationReport:
        report = ValidationReport()
        for ctx in contexts:
            error, bypass = self.check(ctx, target_status, target_release)
            if error is not None:
                report.errors.add(error)
            elif bypass is not None:
                report.bypasses.append(bypass)
        return report


__all__ = [
    "ChecklistCount",
    "ForceBypass",
    "ValidationReport",
    "WorkflowValidator",
    "count_checklist",
    "discover_active_releases",
    "is_body_empty",
]
