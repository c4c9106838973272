from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .checklists import DEFAULT_CHECKLIST_ID, ChecklistStore
from .comments import CONCLUSION_BUCKETS, CommentLibrary
from .inspection_store import InspectionStore, InspectionStoreError
from .inspections import (
    ChecklistNotFoundError,
    FindingNotFoundError,
    InspectionService,
    InspectionServiceError,
)
from .navigation import (
    InspectionNotFoundError,
    InvalidSectionError,
    NavigationBoundaryError,
    NavigationService,
)

BASE_DIR = Path(__file__).resolve().parent
CONFIG_DIR = BASE_DIR / "config"
DATA_DIR = Path(os.getenv("INSPECTION_DATA_DIR", str(BASE_DIR / "data")))
INSPECTIONS_DIR = DATA_DIR / "inspections"
CHECKLIST_DIR = Path(os.getenv("INSPECTION_CHECKLIST_DIR", str(CONFIG_DIR / "checklists")))
COMMENTS_DIR = Path(os.getenv("INSPECTION_COMMENTS_DIR", str(CONFIG_DIR / "comments")))
DEFAULT_CHECKLIST = os.getenv("INSPECTION_DEFAULT_CHECKLIST", DEFAULT_CHECKLIST_ID).strip() or DEFAULT_CHECKLIST_ID

checklist_store = ChecklistStore(root=CHECKLIST_DIR, default_checklist_id=DEFAULT_CHECKLIST)
comment_library = CommentLibrary(root=COMMENTS_DIR)
inspection_store = InspectionStore(root=INSPECTIONS_DIR)
navigation_service = NavigationService(inspection_store, checklist_store)
inspection_service = InspectionService(
    store=inspection_store,
    checklists=checklist_store,
    comments=comment_library,
)

# Configuration is read once at startup; the loaders degrade to empty results on bad files.
checklist_store.load_checklists()
comment_library.load()

app = FastAPI(title="Inspection Navigation Service", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class CreateInspectionBody(BaseModel):
    address: str
    client_name: str
    inspector_name: str | None = None
    checklist_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class NavigateBody(BaseModel):
    section: str = Field(min_length=1)


class StepBody(BaseModel):
    action: str = Field(min_length=1)


class CreateFindingBody(BaseModel):
    text: str
    section: str | None = None
    severity: str = "info"


class CommentMatchBody(BaseModel):
    text: str
    section: str | None = None


def _require_inspection(inspection_id: str):
    try:
        return inspection_service.get(inspection_id)
    except InspectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InspectionStoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc))


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/checklists")
async def list_checklists():
    checklists = []
    for checklist_id in checklist_store.get_available_checklists():
        checklist = checklist_store.get_checklist(checklist_id)
        checklists.append(
            {
                "id": checklist.id,
                "name": checklist.name,
                "version": checklist.version,
                "standard": checklist.standard,
                "section_count": len(checklist.sections),
            }
        )
    default = checklist_store.get_default_checklist()
    return {"checklists": checklists, "default_checklist_id": default.id if default else None}


@app.get("/api/checklists/{checklist_id}")
async def get_checklist(checklist_id: str):
    checklist = checklist_store.get_checklist(checklist_id)
    if not checklist:
        raise HTTPException(status_code=404, detail="Checklist not found")
    return checklist.to_dict()


@app.get("/api/checklists/{checklist_id}/sections")
async def list_checklist_sections(checklist_id: str):
    if not checklist_store.get_checklist(checklist_id):
        raise HTTPException(status_code=404, detail="Checklist not found")
    return [entry.to_dict() for entry in checklist_store.get_all_sections(checklist_id)]


@app.post("/api/inspections", status_code=201)
async def create_inspection(body: CreateInspectionBody):
    try:
        record = inspection_service.start(
            address=body.address,
            client_name=body.client_name,
            inspector_name=body.inspector_name,
            checklist_id=body.checklist_id,
            metadata=body.metadata,
        )
    except ChecklistNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InspectionServiceError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except InspectionStoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return record.to_dict()


@app.get("/api/inspections")
async def list_inspections():
    return [record.to_dict() for record in inspection_service.list()]


@app.get("/api/inspections/{inspection_id}")
async def get_inspection(inspection_id: str):
    return _require_inspection(inspection_id).to_dict()


@app.post("/api/inspections/{inspection_id}/navigate")
async def navigate_inspection(inspection_id: str, body: NavigateBody):
    try:
        return navigation_service.navigate(inspection_id, body.section).to_dict()
    except InspectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InspectionStoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    except InvalidSectionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.post("/api/inspections/{inspection_id}/step")
async def step_inspection(inspection_id: str, body: StepBody):
    try:
        return navigation_service.step(inspection_id, body.action).to_dict()
    except InspectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InspectionStoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    except (InvalidSectionError, NavigationBoundaryError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.get("/api/inspections/{inspection_id}/status")
async def get_inspection_status(inspection_id: str):
    try:
        return navigation_service.get_status(inspection_id).to_dict()
    except InspectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InspectionStoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc))


@app.get("/api/inspections/{inspection_id}/suggest")
async def suggest_next_section(inspection_id: str):
    try:
        return navigation_service.suggest(inspection_id).to_dict()
    except InspectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InspectionStoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc))


@app.post("/api/inspections/{inspection_id}/findings", status_code=201)
async def create_finding(inspection_id: str, body: CreateFindingBody):
    try:
        finding, match = inspection_service.add_finding(
            inspection_id,
            text=body.text,
            section=body.section,
            severity=body.severity,
        )
    except InspectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InspectionStoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    except (InvalidSectionError, InspectionServiceError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    response = finding.to_dict()
    response["match"] = match.to_dict()
    return response


@app.get("/api/inspections/{inspection_id}/findings")
async def list_findings(inspection_id: str):
    try:
        findings = inspection_service.list_findings(inspection_id)
    except InspectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InspectionStoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return [finding.to_dict() for finding in findings]


@app.delete("/api/inspections/{inspection_id}/findings/{finding_id}")
async def delete_finding(inspection_id: str, finding_id: str):
    try:
        inspection_service.delete_finding(inspection_id, finding_id)
    except (InspectionNotFoundError, FindingNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InspectionStoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return {"status": "deleted"}


@app.post("/api/inspections/{inspection_id}/complete")
async def complete_inspection(inspection_id: str):
    try:
        return inspection_service.complete(inspection_id).to_dict()
    except InspectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InspectionStoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    except InspectionServiceError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.get("/api/inspections/{inspection_id}/conclusion")
async def get_inspection_conclusion(inspection_id: str):
    try:
        return inspection_service.conclusion_for(inspection_id)
    except InspectionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InspectionStoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc))


@app.post("/api/comments/match")
async def match_comment(body: CommentMatchBody):
    return comment_library.match(body.text, body.section).to_dict()


@app.get("/api/comments/conclusions/{bucket}")
async def get_comment_conclusion(bucket: str):
    if bucket not in CONCLUSION_BUCKETS:
        raise HTTPException(status_code=400, detail=f"Unknown conclusion bucket '{bucket}'")
    text = comment_library.get_conclusion(bucket)
    if text is None:
        raise HTTPException(status_code=404, detail="Conclusion not found")
    return {"bucket": bucket, "text": text}


@app.post("/api/comments/reload")
async def reload_comments():
    comment_library.reload()
    return {"status": "reloaded", "sections": comment_library.sections()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("inspection_server.main:app", host="0.0.0.0", port=8000, reload=True)
