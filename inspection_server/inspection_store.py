from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol
from uuid import uuid4


logger = logging.getLogger(__name__)


STATUS_STARTED = "STARTED"
STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_COMPLETED = "COMPLETED"
STATUSES = (STATUS_STARTED, STATUS_IN_PROGRESS, STATUS_COMPLETED)

SEVERITIES = ("info", "minor", "major", "urgent")

UPDATABLE_FIELDS = {
    "address",
    "client_name",
    "inspector_name",
    "status",
    "current_section",
    "metadata",
    "completed_at",
}


class InspectionStoreError(RuntimeError):
    pass


@dataclass
class FindingRecord:
    id: str
    inspection_id: str
    section: str
    text: str
    severity: str = "info"
    matched_comment: Optional[str] = None
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "inspectionId": self.inspection_id,
            "section": self.section,
            "text": self.text,
            "severity": self.severity,
            "matchedComment": self.matched_comment,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "FindingRecord":
        return cls(
            id=payload["id"],
            inspection_id=payload["inspectionId"],
            section=payload["section"],
            text=payload.get("text", ""),
            severity=payload.get("severity", "info"),
            matched_comment=payload.get("matchedComment"),
            created_at=payload.get("createdAt", ""),
        )


@dataclass
class InspectionRecord:
    id: str
    address: str
    client_name: str
    checklist_id: str
    current_section: str
    status: str = STATUS_STARTED
    inspector_name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "address": self.address,
            "clientName": self.client_name,
            "inspectorName": self.inspector_name,
            "checklistId": self.checklist_id,
            "status": self.status,
            "currentSection": self.current_section,
            "metadata": self.metadata,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "completedAt": self.completed_at,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "InspectionRecord":
        return cls(
            id=payload["id"],
            address=payload.get("address", ""),
            client_name=payload.get("clientName", ""),
            inspector_name=payload.get("inspectorName"),
            checklist_id=payload["checklistId"],
            status=payload.get("status", STATUS_STARTED),
            current_section=payload.get("currentSection", ""),
            metadata=payload.get("metadata") or {},
            created_at=payload.get("createdAt", ""),
            updated_at=payload.get("updatedAt", ""),
            completed_at=payload.get("completedAt"),
        )


class InspectionRepository(Protocol):
    def get(self, inspection_id: str) -> Optional[InspectionRecord]: ...

    def list_findings(self, inspection_id: str) -> List[FindingRecord]: ...

    def update(self, inspection_id: str, **fields: Any) -> Optional[InspectionRecord]: ...


class InspectionStore:
    """
    Handles persistence of inspections and their findings on disk.

    Each inspection lives in ``{root}/{inspection_id}/inspection.json`` together with
    its findings. Unknown ids resolve to ``None``/``False``.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def _inspection_dir(self, inspection_id: str) -> Path:
        return self.root / inspection_id

    def _store_path(self, inspection_id: str) -> Path:
        return self._inspection_dir(inspection_id) / "inspection.json"

    def _now_iso(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _read_store(self, inspection_id: str) -> Optional[Dict[str, Any]]:
        if not inspection_id or "/" in inspection_id or inspection_id.startswith("."):
            return None
        store_path = self._store_path(inspection_id)
        if not store_path.exists():
            return None
        try:
            payload = json.loads(store_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Failed to read inspection store %s: %s", store_path, exc)
            raise InspectionStoreError(f"Inspection store for '{inspection_id}' is unreadable.") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("inspection"), dict):
            raise InspectionStoreError(f"Invalid inspection store for '{inspection_id}': expected object.")
        if not isinstance(payload.get("findings"), list):
            payload["findings"] = []
        return payload

    def _write_store(self, inspection_id: str, payload: Dict[str, Any]) -> None:
        inspection_dir = self._inspection_dir(inspection_id)
        inspection_dir.mkdir(parents=True, exist_ok=True)
        store_path = self._store_path(inspection_id)
        tmp_path = store_path.with_name(f"{store_path.name}.tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        tmp_path.replace(store_path)

    def create(
        self,
        *,
        address: str,
        client_name: str,
        checklist_id: str,
        current_section: str,
        inspector_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> InspectionRecord:
        inspection_id = uuid4().hex
        timestamp = self._now_iso()
        record = InspectionRecord(
            id=inspection_id,
            address=address,
            client_name=client_name,
            inspector_name=inspector_name,
            checklist_id=checklist_id,
            status=STATUS_STARTED,
            current_section=current_section,
            metadata=dict(metadata or {}),
            created_at=timestamp,
            updated_at=timestamp,
        )
        self._write_store(inspection_id, {"inspection": record.to_dict(), "findings": []})
        return record

    def get(self, inspection_id: str) -> Optional[InspectionRecord]:
        payload = self._read_store(inspection_id)
        if payload is None:
            return None
        return InspectionRecord.from_dict(payload["inspection"])

    def list(self) -> List[InspectionRecord]:
        records = []
        for entry in sorted(self.root.iterdir()):
            if not entry.is_dir():
                continue
            try:
                record = self.get(entry.name)
            except InspectionStoreError as exc:
                logger.warning("Skipping inspection %s: %s", entry.name, exc)
                continue
            if record is not None:
                records.append(record)
        records.sort(key=lambda record: record.created_at)
        return records

    def update(self, inspection_id: str, **fields: Any) -> Optional[InspectionRecord]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise InspectionStoreError(f"Cannot update inspection fields: {', '.join(sorted(unknown))}")
        if "status" in fields and fields["status"] not in STATUSES:
            raise InspectionStoreError(f"Unknown inspection status '{fields['status']}'.")

        payload = self._read_store(inspection_id)
        if payload is None:
            return None
        record = replace(InspectionRecord.from_dict(payload["inspection"]), **fields)
        record.updated_at = self._now_iso()
        payload["inspection"] = record.to_dict()
        self._write_store(inspection_id, payload)
        return record

    def delete(self, inspection_id: str) -> bool:
        payload = self._read_store(inspection_id)
        if payload is None:
            return False
        shutil.rmtree(self._inspection_dir(inspection_id))
        return True

    def add_finding(
        self,
        inspection_id: str,
        *,
        section: str,
        text: str,
        severity: str = "info",
        matched_comment: Optional[str] = None,
    ) -> Optional[FindingRecord]:
        payload = self._read_store(inspection_id)
        if payload is None:
            return None
        finding = FindingRecord(
            id=f"f{uuid4().hex[:12]}",
            inspection_id=inspection_id,
            section=section,
            text=text,
            severity=severity,
            matched_comment=matched_comment,
            created_at=self._now_iso(),
        )
        payload["findings"].append(finding.to_dict())
        payload["inspection"]["updatedAt"] = finding.created_at
        self._write_store(inspection_id, payload)
        return finding

    def list_findings(self, inspection_id: str) -> List[FindingRecord]:
        payload = self._read_store(inspection_id)
        if payload is None:
            return []
        return [
            FindingRecord.from_dict(finding)
            for finding in payload["findings"]
            if isinstance(finding, dict)
        ]

    def delete_finding(self, inspection_id: str, finding_id: str) -> bool:
        payload = self._read_store(inspection_id)
        if payload is None:
            return False
        findings = payload["findings"]
        for index, finding in enumerate(findings):
            if isinstance(finding, dict) and finding.get("id") == finding_id:
                findings.pop(index)
                payload["inspection"]["updatedAt"] = self._now_iso()
                self._write_store(inspection_id, payload)
                return True
        return False
