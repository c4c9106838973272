from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml


logger = logging.getLogger(__name__)

DEFAULT_CHECKLIST_DIR = Path(__file__).resolve().parent / "config" / "checklists"
DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "checklist.schema.json"
DEFAULT_CHECKLIST_ID = "nz-ppi"
CHECKLIST_SUFFIXES = (".yaml", ".yml")
SUBAREA_SEPARATOR = "."


class ChecklistLoadError(ValueError):
    pass


@dataclass(frozen=True)
class SectionRef:
    """Address of a section, or of a subarea nested one level under it."""

    section_id: str
    subarea_id: str | None = None

    @classmethod
    def parse(cls, value: str) -> "SectionRef":
        section_id, separator, subarea_id = value.partition(SUBAREA_SEPARATOR)
        if not separator:
            return cls(section_id=value)
        return cls(section_id=section_id, subarea_id=subarea_id)

    def __str__(self) -> str:
        if self.subarea_id is None:
            return self.section_id
        return f"{self.section_id}{SUBAREA_SEPARATOR}{self.subarea_id}"


@dataclass(frozen=True)
class Subarea:
    id: str
    name: str
    prompt: str
    items: tuple[str, ...] = ()


@dataclass(frozen=True)
class Section:
    id: str
    name: str
    prompt: str
    items: tuple[str, ...] = ()
    subareas: tuple[Subarea, ...] = ()
    report_section: int | None = None

    def get_subarea(self, subarea_id: str) -> Subarea | None:
        for subarea in self.subareas:
            if subarea.id == subarea_id:
                return subarea
        return None


@dataclass(frozen=True)
class Checklist:
    id: str
    name: str
    version: str
    standard: str | None = None
    sections: tuple[Section, ...] = ()
    conclusions: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "standard": self.standard,
            "sections": [
                {
                    "id": section.id,
                    "name": section.name,
                    "prompt": section.prompt,
                    "items": list(section.items),
                    "subareas": [
                        {
                            "id": subarea.id,
                            "name": subarea.name,
                            "prompt": subarea.prompt,
                            "items": list(subarea.items),
                        }
                        for subarea in section.subareas
                    ],
                    "report_section": section.report_section,
                }
                for section in self.sections
            ],
            "conclusions": dict(self.conclusions),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class SectionEntry:
    id: str
    name: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True)
class ResolvedSection:
    id: str
    name: str
    prompt: str
    items: tuple[str, ...] = ()


class ChecklistStore:
    """
    Loads checklist definitions from a directory of YAML files once and serves lookups.

    Unknown checklist ids resolve to ``None``; callers decide whether that is an error.
    """

    def __init__(
        self,
        *,
        root: Path = DEFAULT_CHECKLIST_DIR,
        schema_path: Path = DEFAULT_SCHEMA_PATH,
        default_checklist_id: str = DEFAULT_CHECKLIST_ID,
    ) -> None:
        self.root = root
        self.schema_path = schema_path
        self.default_checklist_id = default_checklist_id
        self._checklists: dict[str, Checklist] = {}
        self._loaded = False

    def load_checklists(self) -> None:
        if self._loaded:
            return

        if not self.root.is_dir():
            logger.warning("Checklist config path not found: %s", self.root)
            self._loaded = True
            return

        schema = self._read_schema()
        paths = sorted(
            path for path in self.root.iterdir()
            if path.is_file() and path.suffix in CHECKLIST_SUFFIXES
        )
        for path in paths:
            try:
                checklist = self._load_file(path, schema)
            except ChecklistLoadError as exc:
                logger.warning("Skipping checklist %s: %s", path.name, exc)
                continue
            self._checklists[checklist.id] = checklist
            logger.info("Loaded checklist: %s (%d sections)", checklist.id, len(checklist.sections))

        self._loaded = True

    def reload(self) -> None:
        self._checklists = {}
        self._loaded = False
        self.load_checklists()

    def get_checklist(self, checklist_id: str) -> Checklist | None:
        self.load_checklists()
        return self._checklists.get(checklist_id)

    def get_default_checklist(self) -> Checklist | None:
        self.load_checklists()
        if self.default_checklist_id in self._checklists:
            return self._checklists[self.default_checklist_id]
        return next(iter(self._checklists.values()), None)

    def get_available_checklists(self) -> list[str]:
        self.load_checklists()
        return list(self._checklists.keys())

    def get_first_section(self, checklist_id: str) -> Section | None:
        checklist = self.get_checklist(checklist_id)
        if not checklist or not checklist.sections:
            return None
        return checklist.sections[0]

    def get_section(self, checklist_id: str, section_id: str) -> Section | None:
        checklist = self.get_checklist(checklist_id)
        if not checklist:
            return None
        for section in checklist.sections:
            if section.id == section_id:
                return section
        return None

    def get_all_sections(self, checklist_id: str) -> list[SectionEntry]:
        checklist = self.get_checklist(checklist_id)
        if not checklist:
            return []

        entries: list[SectionEntry] = []
        for section in checklist.sections:
            entries.append(SectionEntry(id=section.id, name=section.name))
            for subarea in section.subareas:
                ref = SectionRef(section_id=section.id, subarea_id=subarea.id)
                entries.append(SectionEntry(id=str(ref), name=f"{section.name} - {subarea.name}"))
        return entries

    def resolve_section(self, checklist_id: str, section_id: str) -> ResolvedSection | None:
        section = self.get_section(checklist_id, section_id)
        if section:
            return ResolvedSection(
                id=section.id,
                name=section.name,
                prompt=section.prompt,
                items=section.items,
            )

        ref = SectionRef.parse(section_id)
        if ref.subarea_id is None:
            return None
        parent = self.get_section(checklist_id, ref.section_id)
        if not parent:
            return None
        subarea = parent.get_subarea(ref.subarea_id)
        if not subarea:
            return None
        return ResolvedSection(
            id=str(ref),
            name=f"{parent.name} - {subarea.name}",
            prompt=subarea.prompt,
            items=subarea.items,
        )

    def _read_schema(self) -> dict[str, Any] | None:
        if not self.schema_path.exists():
            logger.warning("Checklist schema not found, skipping validation: %s", self.schema_path)
            return None
        return json.loads(self.schema_path.read_text(encoding="utf-8"))

    def _load_file(self, path: Path, schema: dict[str, Any] | None) -> Checklist:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise ChecklistLoadError(f"could not parse YAML: {exc}") from exc

        if data is None:
            data = {}
        if schema is not None:
            try:
                jsonschema.validate(data, schema)
            except jsonschema.ValidationError as exc:
                raise ChecklistLoadError(f"schema validation failed: {exc.message}") from exc
        if not isinstance(data, dict):
            raise ChecklistLoadError(f"expected a mapping, got {type(data).__name__}")
        raw_sections = data.get("sections") or []
        if not isinstance(raw_sections, list):
            raise ChecklistLoadError("'sections' must be a list")

        checklist_id = path.stem
        conclusions = data.get("conclusions")
        if not isinstance(conclusions, dict):
            conclusions = {}
        metadata = data.get("metadata")
        return Checklist(
            id=checklist_id,
            name=_clean_str(data.get("name")) or checklist_id,
            version=_clean_str(data.get("version")) or "1.0",
            standard=_clean_str(data.get("standard")),
            sections=self._normalize_sections(checklist_id, raw_sections),
            conclusions={str(key): value for key, value in conclusions.items() if isinstance(value, str)},
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
        )

    def _normalize_sections(self, checklist_id: str, raw_sections: list[Any]) -> tuple[Section, ...]:
        sections: list[Section] = []
        seen: set[str] = set()
        for index, raw in enumerate(raw_sections):
            section_id = _entry_id(raw)
            if section_id is None:
                logger.warning("Checklist %s: dropping section at index %d without an id", checklist_id, index)
                continue
            if section_id in seen:
                logger.warning("Checklist %s: duplicate section id '%s' ignored", checklist_id, section_id)
                continue
            seen.add(section_id)

            name = _clean_str(raw.get("name")) or section_id
            report_section = raw.get("report_section")
            sections.append(
                Section(
                    id=section_id,
                    name=name,
                    prompt=_clean_str(raw.get("prompt")) or _default_prompt(name),
                    items=_normalize_items(raw.get("items")),
                    subareas=self._normalize_subareas(checklist_id, section_id, raw.get("subareas") or []),
                    report_section=report_section if isinstance(report_section, int) else None,
                )
            )
        return tuple(sections)

    def _normalize_subareas(self, checklist_id: str, section_id: str, raw_subareas: Any) -> tuple[Subarea, ...]:
        if not isinstance(raw_subareas, list):
            logger.warning("Checklist %s: subareas of '%s' must be a list", checklist_id, section_id)
            return ()

        subareas: list[Subarea] = []
        seen: set[str] = set()
        for raw in raw_subareas:
            subarea_id = _entry_id(raw)
            if subarea_id is None or subarea_id in seen:
                logger.warning(
                    "Checklist %s: dropping invalid or duplicate subarea under '%s'",
                    checklist_id,
                    section_id,
                )
                continue
            seen.add(subarea_id)
            name = _clean_str(raw.get("name")) or subarea_id
            subareas.append(
                Subarea(
                    id=subarea_id,
                    name=name,
                    prompt=_clean_str(raw.get("prompt")) or _default_prompt(name),
                    items=_normalize_items(raw.get("items")),
                )
            )
        return tuple(subareas)


def _entry_id(raw: Any) -> str | None:
    if not isinstance(raw, dict):
        return None
    value = raw.get("id")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    return _clean_str(value)


def _normalize_items(raw_items: Any) -> tuple[str, ...]:
    if not isinstance(raw_items, list):
        return ()
    return tuple(str(item) for item in raw_items if isinstance(item, (str, int, float)) and str(item).strip())


def _default_prompt(name: str) -> str:
    return f"Check {name.lower()}."


def _clean_str(value: Any) -> str | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None
