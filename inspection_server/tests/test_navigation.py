from __future__ import annotations

import sys
import textwrap
from dataclasses import replace
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from inspection_server.checklists import ChecklistStore  # noqa: E402
from inspection_server.inspection_store import FindingRecord, InspectionRecord  # noqa: E402
from inspection_server.navigation import (  # noqa: E402
    InspectionNotFoundError,
    InvalidSectionError,
    NavigationBoundaryError,
    NavigationService,
    progress_percentage,
)


class FakeRepository:
    def __init__(self) -> None:
        self.inspections: dict[str, InspectionRecord] = {}
        self.findings: dict[str, list[FindingRecord]] = {}
        self.updates: list[tuple[str, dict]] = []

    def add(self, record: InspectionRecord) -> None:
        self.inspections[record.id] = record
        self.findings.setdefault(record.id, [])

    def add_findings(self, inspection_id: str, *sections: str) -> None:
        for section in sections:
            findings = self.findings.setdefault(inspection_id, [])
            findings.append(
                FindingRecord(
                    id=f"f-{len(findings) + 1}",
                    inspection_id=inspection_id,
                    section=section,
                    text="note",
                )
            )

    def get(self, inspection_id: str):
        return self.inspections.get(inspection_id)

    def list_findings(self, inspection_id: str):
        return list(self.findings.get(inspection_id, []))

    def update(self, inspection_id: str, **fields):
        record = self.inspections.get(inspection_id)
        if record is None:
            return None
        self.updates.append((inspection_id, fields))
        record = replace(record, **fields)
        self.inspections[inspection_id] = record
        return record


def _checklists(tmp_path: Path, content: str, checklist_id: str = "house") -> ChecklistStore:
    root = tmp_path / "checklists"
    root.mkdir(parents=True, exist_ok=True)
    (root / f"{checklist_id}.yaml").write_text(textwrap.dedent(content), encoding="utf-8")
    return ChecklistStore(root=root)


TWO_SECTIONS = """
sections:
  - id: exterior
    name: Exterior
    prompt: Check exterior.
    items: [walls, roof]
  - id: interior
    name: Interior
    prompt: Check interior.
    items: [floors, ceilings]
"""

FOUR_SECTIONS = """
sections:
  - id: site
    name: Site
  - id: exterior
    name: Exterior
    subareas:
      - id: roof
        name: Roof
        prompt: Check the roof.
  - id: interior
    name: Interior
"""


def _inspection(current_section: str = "exterior", status: str = "STARTED") -> InspectionRecord:
    return InspectionRecord(
        id="insp-1",
        address="123 Test St",
        client_name="Test Client",
        inspector_name="Test Inspector",
        checklist_id="house",
        current_section=current_section,
        status=status,
    )


def _service(tmp_path: Path, content: str = TWO_SECTIONS, **inspection_fields):
    repository = FakeRepository()
    repository.add(_inspection(**inspection_fields))
    return NavigationService(repository, _checklists(tmp_path, content)), repository


def test_navigate_to_valid_section_moves_to_in_progress(tmp_path: Path):
    service, repository = _service(tmp_path)

    result = service.navigate("insp-1", "interior")

    assert result.previous_section == "exterior"
    assert result.current_section == "interior"
    assert result.section_name == "Interior"
    assert result.prompt == "Check interior."
    assert result.items == ["floors", "ceilings"]
    assert repository.updates == [("insp-1", {"current_section": "interior", "status": "IN_PROGRESS"})]
    assert repository.get("insp-1").status == "IN_PROGRESS"


def test_navigate_sets_in_progress_even_when_already_there(tmp_path: Path):
    service, repository = _service(tmp_path, status="IN_PROGRESS")

    service.navigate("insp-1", "exterior")

    record = repository.get("insp-1")
    assert record.current_section == "exterior"
    assert record.status == "IN_PROGRESS"


def test_navigate_to_subarea_uses_composite_id(tmp_path: Path):
    service, repository = _service(tmp_path, FOUR_SECTIONS)

    result = service.navigate("insp-1", "exterior.roof")

    assert result.current_section == "exterior.roof"
    assert result.section_name == "Exterior - Roof"
    assert result.prompt == "Check the roof."
    assert repository.get("insp-1").current_section == "exterior.roof"


def test_navigate_unknown_section_raises_and_does_not_mutate(tmp_path: Path):
    service, repository = _service(tmp_path)

    with pytest.raises(InvalidSectionError) as excinfo:
        service.navigate("insp-1", "roof")

    assert "roof" in str(excinfo.value)
    assert "house" in str(excinfo.value)
    assert repository.updates == []
    assert repository.get("insp-1").current_section == "exterior"
    assert repository.get("insp-1").status == "STARTED"


def test_navigate_with_missing_checklist_raises_invalid_section(tmp_path: Path):
    repository = FakeRepository()
    repository.add(replace(_inspection(), checklist_id="gone"))
    service = NavigationService(repository, _checklists(tmp_path, TWO_SECTIONS))

    with pytest.raises(InvalidSectionError, match="gone"):
        service.navigate("insp-1", "interior")


def test_unknown_inspection_raises_not_found(tmp_path: Path):
    service, _ = _service(tmp_path)

    with pytest.raises(InspectionNotFoundError):
        service.navigate("missing", "interior")
    with pytest.raises(InspectionNotFoundError):
        service.get_status("missing")
    with pytest.raises(InspectionNotFoundError):
        service.suggest("missing")
    with pytest.raises(InspectionNotFoundError):
        service.step("missing", "next")


def test_status_counts_findings_per_section(tmp_path: Path):
    service, repository = _service(tmp_path, FOUR_SECTIONS)
    repository.add_findings("insp-1", "exterior", "exterior", "interior")

    status = service.get_status("insp-1")

    assert status.progress.to_dict() == {"completed": 2, "total": 4, "percentage": 50}
    assert status.can_complete is True
    assert status.total_findings == 3
    assert status.current_section.id == "exterior"
    assert status.current_section.name == "Exterior"
    assert status.current_section.findings_count == 2
    assert status.address == "123 Test St"
    assert [(section.id, section.findings_count) for section in status.sections] == [
        ("site", 0),
        ("exterior", 2),
        ("exterior.roof", 0),
        ("interior", 1),
    ]


def test_status_requires_half_of_sections_to_complete(tmp_path: Path):
    service, repository = _service(tmp_path, FOUR_SECTIONS)
    repository.add_findings("insp-1", "site")

    status = service.get_status("insp-1")

    assert status.progress.percentage == 25
    assert status.can_complete is False


def test_status_ignores_findings_outside_checklist(tmp_path: Path):
    service, repository = _service(tmp_path)
    repository.add_findings("insp-1", "garage")

    status = service.get_status("insp-1")

    assert status.progress.completed == 0
    assert status.total_findings == 1
    assert status.can_complete is False


def test_status_with_empty_checklist_floors_total_at_one(tmp_path: Path):
    service, _ = _service(tmp_path, "name: Empty\n")

    status = service.get_status("insp-1")

    assert status.progress.to_dict() == {"completed": 0, "total": 1, "percentage": 0}
    assert status.can_complete is False
    assert status.current_section.name == "exterior"


def test_progress_percentage_rounds_half_up():
    assert progress_percentage(1, 8) == 13
    assert progress_percentage(1, 3) == 33
    assert progress_percentage(2, 3) == 67
    assert progress_percentage(0, 1) == 0
    assert progress_percentage(5, 5) == 100


def test_suggest_finds_next_unvisited_after_current(tmp_path: Path):
    service, repository = _service(tmp_path, FOUR_SECTIONS)
    repository.add_findings("insp-1", "exterior.roof")

    result = service.suggest("insp-1")

    assert result.next_section == {"id": "interior", "name": "Interior", "prompt": "Check interior."}
    assert result.remaining_sections == 3
    assert result.can_complete is False
    assert "Visit at least 1 more section(s)" in result.suggestion


def test_suggest_wraps_around_to_start(tmp_path: Path):
    service, repository = _service(tmp_path, FOUR_SECTIONS, current_section="exterior.roof")
    repository.add_findings("insp-1", "interior", "exterior")

    result = service.suggest("insp-1")

    assert result.next_section["id"] == "site"
    assert result.remaining_sections == 2
    assert result.can_complete is True
    assert "You can complete now or continue with 2 remaining section(s)" in result.suggestion


def test_suggest_skips_current_section_when_everything_else_visited(tmp_path: Path):
    service, repository = _service(tmp_path)
    repository.add_findings("insp-1", "interior")

    result = service.suggest("insp-1")

    assert result.next_section is None
    assert result.remaining_sections == 1
    assert result.can_complete is True


def test_suggest_when_all_sections_visited(tmp_path: Path):
    service, repository = _service(tmp_path)
    repository.add_findings("insp-1", "exterior", "interior")

    result = service.suggest("insp-1")

    assert result.next_section is None
    assert result.remaining_sections == 0
    assert result.can_complete is True
    assert result.suggestion.startswith("All sections have been visited")


def test_step_next_and_back_follow_flattened_order(tmp_path: Path):
    service, repository = _service(tmp_path, FOUR_SECTIONS)

    assert service.step("insp-1", "next").current_section == "exterior.roof"
    assert service.step("insp-1", "SKIP").current_section == "interior"
    assert service.step("insp-1", "back").current_section == "exterior.roof"
    assert service.step("insp-1", "site").current_section == "site"
    assert repository.get("insp-1").status == "IN_PROGRESS"


def test_step_past_either_end_raises_boundary_error(tmp_path: Path):
    service, repository = _service(tmp_path, current_section="interior")

    with pytest.raises(NavigationBoundaryError, match="last section"):
        service.step("insp-1", "next")

    service.navigate("insp-1", "exterior")
    with pytest.raises(NavigationBoundaryError, match="first section"):
        service.step("insp-1", "back")
    assert repository.get("insp-1").current_section == "exterior"


def test_step_to_unknown_section_raises_invalid_section(tmp_path: Path):
    service, _ = _service(tmp_path)

    with pytest.raises(InvalidSectionError):
        service.step("insp-1", "attic")


def test_suggest_on_empty_checklist_allows_completion(tmp_path: Path):
    service, _ = _service(tmp_path, "name: Empty\n")

    result = service.suggest("insp-1")

    assert result.next_section is None
    assert result.remaining_sections == 0
    assert result.can_complete is True
    assert result.suggestion.startswith("All sections have been visited")
