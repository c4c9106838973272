from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable

from .checklists import ChecklistStore, ResolvedSection, SectionEntry
from .inspection_store import STATUS_IN_PROGRESS, FindingRecord, InspectionRecord, InspectionRepository


logger = logging.getLogger(__name__)

# Share of sections that need at least one finding before an inspection may be completed.
COMPLETION_THRESHOLD = 0.5

RELATIVE_ACTIONS = {"next", "back", "skip"}


class NavigationError(RuntimeError):
    pass


class InspectionNotFoundError(NavigationError):
    def __init__(self, inspection_id: str) -> None:
        super().__init__(f"Inspection not found: {inspection_id}")
        self.inspection_id = inspection_id


class InvalidSectionError(NavigationError):
    def __init__(self, section_id: str, checklist_id: str) -> None:
        super().__init__(f"Invalid section '{section_id}' for checklist '{checklist_id}'")
        self.section_id = section_id
        self.checklist_id = checklist_id


class NavigationBoundaryError(NavigationError):
    pass


@dataclass(frozen=True)
class NavigationResult:
    inspection_id: str
    previous_section: str
    current_section: str
    section_name: str
    prompt: str | None = None
    items: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "inspection_id": self.inspection_id,
            "previous_section": self.previous_section,
            "current_section": self.current_section,
            "section_name": self.section_name,
            "prompt": self.prompt,
            "items": list(self.items),
        }


@dataclass(frozen=True)
class SectionStatus:
    id: str
    name: str
    findings_count: int

    @property
    def has_findings(self) -> bool:
        return self.findings_count > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "findings_count": self.findings_count,
            "has_findings": self.has_findings,
        }


@dataclass(frozen=True)
class Progress:
    completed: int
    total: int
    percentage: int

    def to_dict(self) -> dict[str, int]:
        return {"completed": self.completed, "total": self.total, "percentage": self.percentage}


@dataclass(frozen=True)
class CurrentSection:
    id: str
    name: str
    findings_count: int
    prompt: str | None = None
    items: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "prompt": self.prompt,
            "items": list(self.items),
            "findings_count": self.findings_count,
        }


@dataclass(frozen=True)
class InspectionStatus:
    inspection_id: str
    address: str
    client_name: str
    inspector_name: str | None
    status: str
    current_section: CurrentSection
    progress: Progress
    sections: list[SectionStatus]
    total_findings: int
    can_complete: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "inspection_id": self.inspection_id,
            "address": self.address,
            "client_name": self.client_name,
            "inspector_name": self.inspector_name,
            "status": self.status,
            "current_section": self.current_section.to_dict(),
            "progress": self.progress.to_dict(),
            "sections": [section.to_dict() for section in self.sections],
            "total_findings": self.total_findings,
            "can_complete": self.can_complete,
        }


@dataclass(frozen=True)
class SuggestResult:
    inspection_id: str
    current_section: str
    remaining_sections: int
    can_complete: bool
    suggestion: str
    next_section: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "inspection_id": self.inspection_id,
            "current_section": self.current_section,
            "next_section": self.next_section,
            "remaining_sections": self.remaining_sections,
            "can_complete": self.can_complete,
            "suggestion": self.suggestion,
        }


def required_sections(total_sections: int) -> int:
    return math.ceil(total_sections * COMPLETION_THRESHOLD)


def progress_percentage(visited: int, total: int) -> int:
    # Half-up, not Python's banker's rounding: 1 of 8 sections is 13%.
    return math.floor(visited / total * 100 + 0.5)


def count_findings_by_section(findings: Iterable[FindingRecord]) -> Counter[str]:
    return Counter(finding.section for finding in findings)


class NavigationService:
    """
    Moves an inspection between checklist sections and reports progress.

    A section counts as visited once it has at least one recorded finding; simply
    navigating to a section does not count.
    """

    def __init__(self, repository: InspectionRepository, checklists: ChecklistStore) -> None:
        self.repository = repository
        self.checklists = checklists

    def navigate(self, inspection_id: str, section_id: str) -> NavigationResult:
        inspection = self._require_inspection(inspection_id)
        section = self._require_section(inspection, section_id)

        previous_section = inspection.current_section
        updated = self.repository.update(
            inspection_id,
            current_section=section.id,
            status=STATUS_IN_PROGRESS,
        )
        if updated is None:
            raise InspectionNotFoundError(inspection_id)

        logger.info("Inspection %s moved from %s to %s", inspection_id, previous_section, section.id)
        return NavigationResult(
            inspection_id=inspection_id,
            previous_section=previous_section,
            current_section=section.id,
            section_name=section.name,
            prompt=section.prompt,
            items=list(section.items),
        )

    def step(self, inspection_id: str, action: str) -> NavigationResult:
        """Navigate with ``next``/``back``/``skip`` or jump to an explicit section id."""
        normalized = action.strip().lower()
        if normalized not in RELATIVE_ACTIONS:
            return self.navigate(inspection_id, action.strip())

        inspection = self._require_inspection(inspection_id)
        order = [entry.id for entry in self.checklists.get_all_sections(inspection.checklist_id)]
        if not order:
            raise InvalidSectionError(inspection.current_section, inspection.checklist_id)

        try:
            current_index = order.index(inspection.current_section)
        except ValueError:
            current_index = -1

        if normalized == "back":
            if current_index <= 0:
                raise NavigationBoundaryError("Already at first section")
            target = order[current_index - 1]
        else:
            if current_index >= len(order) - 1:
                raise NavigationBoundaryError("Already at last section")
            target = order[current_index + 1]
        return self.navigate(inspection_id, target)

    def get_status(self, inspection_id: str) -> InspectionStatus:
        inspection = self._require_inspection(inspection_id)
        findings = self.repository.list_findings(inspection_id)
        counts = count_findings_by_section(findings)
        all_sections = self.checklists.get_all_sections(inspection.checklist_id)

        section_statuses = [
            SectionStatus(id=entry.id, name=entry.name, findings_count=counts.get(entry.id, 0))
            for entry in all_sections
        ]
        visited = sum(1 for section in section_statuses if section.has_findings)
        total = len(section_statuses) or 1

        resolved = self.checklists.resolve_section(inspection.checklist_id, inspection.current_section)
        current = CurrentSection(
            id=inspection.current_section,
            name=resolved.name if resolved else inspection.current_section,
            prompt=resolved.prompt if resolved else None,
            items=list(resolved.items) if resolved else [],
            findings_count=counts.get(inspection.current_section, 0),
        )

        return InspectionStatus(
            inspection_id=inspection_id,
            address=inspection.address,
            client_name=inspection.client_name,
            inspector_name=inspection.inspector_name,
            status=inspection.status,
            current_section=current,
            progress=Progress(
                completed=visited,
                total=total,
                percentage=progress_percentage(visited, total),
            ),
            sections=section_statuses,
            total_findings=len(findings),
            can_complete=visited >= required_sections(total),
        )

    def suggest(self, inspection_id: str) -> SuggestResult:
        inspection = self._require_inspection(inspection_id)
        counts = count_findings_by_section(self.repository.list_findings(inspection_id))
        all_sections = self.checklists.get_all_sections(inspection.checklist_id)

        visited_ids = {entry.id for entry in all_sections if counts.get(entry.id, 0) > 0}
        visited = len(visited_ids)
        remaining = sum(1 for entry in all_sections if entry.id not in visited_ids)
        # No floor here: an empty checklist needs nothing visited.
        required = required_sections(len(all_sections))
        can_complete = visited >= required

        next_entry = self._next_unvisited(all_sections, inspection.current_section, visited_ids)
        next_section = None
        if next_entry is not None:
            resolved = self.checklists.resolve_section(inspection.checklist_id, next_entry.id)
            next_section = {
                "id": next_entry.id,
                "name": next_entry.name,
                "prompt": resolved.prompt if resolved else None,
            }

        if remaining == 0:
            suggestion = "All sections have been visited. You can complete the inspection and generate a report."
        elif can_complete:
            suggestion = (
                f"You have visited {visited} of {len(all_sections)} sections. "
                f"You can complete now or continue with {remaining} remaining section(s)."
            )
        else:
            suggestion = (
                f"Continue inspection. {remaining} section(s) remaining. "
                f"Visit at least {required - visited} more section(s) before completing."
            )

        return SuggestResult(
            inspection_id=inspection_id,
            current_section=inspection.current_section,
            next_section=next_section,
            remaining_sections=remaining,
            can_complete=can_complete,
            suggestion=suggestion,
        )

    def _next_unvisited(
        self,
        all_sections: list[SectionEntry],
        current_section: str,
        visited_ids: set[str],
    ) -> SectionEntry | None:
        current_index = next(
            (index for index, entry in enumerate(all_sections) if entry.id == current_section),
            -1,
        )
        after = all_sections[current_index + 1:]
        before = all_sections[:current_index] if current_index > 0 else []
        for entry in [*after, *before]:
            if entry.id not in visited_ids:
                return entry
        return None

    def _require_inspection(self, inspection_id: str) -> InspectionRecord:
        inspection = self.repository.get(inspection_id)
        if inspection is None:
            raise InspectionNotFoundError(inspection_id)
        return inspection

    def _require_section(self, inspection: InspectionRecord, section_id: str) -> ResolvedSection:
        checklist = self.checklists.get_checklist(inspection.checklist_id)
        if checklist is None:
            raise InvalidSectionError(section_id, inspection.checklist_id)
        section = self.checklists.resolve_section(checklist.id, section_id)
        if section is None:
            raise InvalidSectionError(section_id, inspection.checklist_id)
        return section
