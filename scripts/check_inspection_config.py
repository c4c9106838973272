from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from inspection_server.checklists import DEFAULT_CHECKLIST_DIR, ChecklistStore
from inspection_server.comments import CONCLUSION_BUCKETS, DEFAULT_COMMENTS_DIR, CommentLibrary


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Load checklist and comment library config and print what the service would see.",
    )
    parser.add_argument(
        "--checklists",
        type=Path,
        default=DEFAULT_CHECKLIST_DIR,
        help="Directory of checklist YAML files.",
    )
    parser.add_argument(
        "--comments",
        type=Path,
        default=DEFAULT_COMMENTS_DIR,
        help="Directory holding defaults.yaml and optional custom.yaml.",
    )
    parser.add_argument("--match", help="Finding text to run through the comment matcher.")
    parser.add_argument("--section", help="Section hint for --match.")
    return parser


def summarize(
    checklists: ChecklistStore,
    comments: CommentLibrary,
    *,
    match_text: str | None = None,
    section: str | None = None,
) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "checklists": {
            checklist_id: {
                "sections": len(checklists.get_checklist(checklist_id).sections),
                "addressable_sections": len(checklists.get_all_sections(checklist_id)),
            }
            for checklist_id in checklists.get_available_checklists()
        },
        "default_checklist": getattr(checklists.get_default_checklist(), "id", None),
        "comment_sections": comments.sections(),
        "missing_conclusions": [
            bucket for bucket in CONCLUSION_BUCKETS if comments.get_conclusion(bucket) is None
        ],
    }
    if match_text:
        summary["match"] = comments.match(match_text, section).to_dict()
    return summary


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    args = _parser().parse_args()

    summary = summarize(
        ChecklistStore(root=args.checklists),
        CommentLibrary(root=args.comments),
        match_text=args.match,
        section=args.section,
    )
    print(json.dumps(summary, indent=2))
    return 0 if summary["checklists"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
