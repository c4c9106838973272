from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from .checklists import ChecklistStore
from .comments import CommentLibrary, MatchResult
from .inspection_store import (
    SEVERITIES,
    STATUS_COMPLETED,
    FindingRecord,
    InspectionRecord,
    InspectionStore,
)
from .navigation import InspectionNotFoundError, InvalidSectionError


logger = logging.getLogger(__name__)

# Worst recorded severity -> conclusion bucket in the comment library.
SEVERITY_CONCLUSIONS = {
    "urgent": "urgent",
    "major": "attention",
    "minor": "minor",
    "info": "good",
}


class InspectionServiceError(ValueError):
    pass


class ChecklistNotFoundError(InspectionServiceError):
    pass


class FindingNotFoundError(InspectionServiceError):
    pass


class InspectionService:
    def __init__(
        self,
        *,
        store: InspectionStore,
        checklists: ChecklistStore,
        comments: CommentLibrary,
    ) -> None:
        self.store = store
        self.checklists = checklists
        self.comments = comments

    def start(
        self,
        *,
        address: str,
        client_name: str,
        inspector_name: str | None = None,
        checklist_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> InspectionRecord:
        address = address.strip()
        client_name = client_name.strip()
        if not address:
            raise InspectionServiceError("address is required.")
        if not client_name:
            raise InspectionServiceError("client_name is required.")

        if checklist_id:
            checklist = self.checklists.get_checklist(checklist_id)
            if checklist is None:
                raise ChecklistNotFoundError(f"Unknown checklist_id '{checklist_id}'.")
        else:
            checklist = self.checklists.get_default_checklist()
            if checklist is None:
                raise ChecklistNotFoundError("No checklists are available.")

        first_section = self.checklists.get_first_section(checklist.id)
        if first_section is None:
            raise InspectionServiceError(f"Checklist '{checklist.id}' has no sections.")

        record = self.store.create(
            address=address,
            client_name=client_name,
            inspector_name=inspector_name,
            checklist_id=checklist.id,
            current_section=first_section.id,
            metadata=metadata,
        )
        logger.info("Started inspection %s using checklist %s", record.id, checklist.id)
        return record

    def get(self, inspection_id: str) -> InspectionRecord:
        record = self.store.get(inspection_id)
        if record is None:
            raise InspectionNotFoundError(inspection_id)
        return record

    def list(self) -> list[InspectionRecord]:
        return self.store.list()

    def add_finding(
        self,
        inspection_id: str,
        *,
        text: str,
        section: str | None = None,
        severity: str = "info",
    ) -> tuple[FindingRecord, MatchResult]:
        inspection = self.get(inspection_id)
        text = text.strip()
        if not text:
            raise InspectionServiceError("text is required.")
        severity = severity.strip().lower()
        if severity not in SEVERITIES:
            raise InspectionServiceError(
                f"Unknown severity '{severity}'. Expected one of: {', '.join(SEVERITIES)}."
            )

        if section:
            resolved = self.checklists.resolve_section(inspection.checklist_id, section)
            if resolved is None:
                raise InvalidSectionError(section, inspection.checklist_id)
            finding_section = resolved.id
        else:
            finding_section = inspection.current_section

        match = self.comments.match(text, finding_section)
        finding = self.store.add_finding(
            inspection_id,
            section=finding_section,
            text=text,
            severity=severity,
            matched_comment=match.comment if match.matched else None,
        )
        if finding is None:
            raise InspectionNotFoundError(inspection_id)
        return finding, match

    def list_findings(self, inspection_id: str) -> list[FindingRecord]:
        self.get(inspection_id)
        return self.store.list_findings(inspection_id)

    def delete_finding(self, inspection_id: str, finding_id: str) -> None:
        self.get(inspection_id)
        if not self.store.delete_finding(inspection_id, finding_id):
            raise FindingNotFoundError(f"Finding not found: {finding_id}")

    def complete(self, inspection_id: str) -> InspectionRecord:
        inspection = self.get(inspection_id)
        if inspection.status == STATUS_COMPLETED:
            raise InspectionServiceError(f"Inspection {inspection_id} is already completed.")
        updated = self.store.update(
            inspection_id,
            status=STATUS_COMPLETED,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )
        if updated is None:
            raise InspectionNotFoundError(inspection_id)
        logger.info("Completed inspection %s", inspection_id)
        return updated

    def conclusion_for(self, inspection_id: str) -> dict[str, Any]:
        findings = self.list_findings(inspection_id)
        bucket = "good"
        for severity in ("urgent", "major", "minor"):
            if any(finding.severity == severity for finding in findings):
                bucket = SEVERITY_CONCLUSIONS[severity]
                break
        return {
            "inspection_id": inspection_id,
            "bucket": bucket,
            "text": self.comments.get_conclusion(bucket),
        }
