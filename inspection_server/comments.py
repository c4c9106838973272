from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union

import yaml


logger = logging.getLogger(__name__)

DEFAULT_COMMENTS_DIR = Path(__file__).resolve().parent / "config" / "comments"
DEFAULTS_FILENAME = "defaults.yaml"
CUSTOM_FILENAME = "custom.yaml"

METADATA_KEYS = {"version"}
CONCLUSIONS_KEY = "conclusions"
CONCLUSION_BUCKETS = ("good", "minor", "attention", "urgent")

# A match at or above this score is "exact" and stops the global fallback search.
SIGNIFICANT_SCORE = 3.0
MAX_KEYWORD_SCORE = 3.0

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class CommentEntry:
    key: str
    text: str
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class CommentGroup:
    key: str
    children: tuple["CommentNode", ...] = ()


CommentNode = Union[CommentEntry, CommentGroup]


@dataclass(frozen=True)
class MatchResult:
    matched: bool
    confidence: str = "none"
    comment: str | None = None
    section: str | None = None
    key: str | None = None
    path: str | None = None
    score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "matched": self.matched,
            "comment": self.comment,
            "section": self.section,
            "key": self.key,
            "path": self.path,
            "confidence": self.confidence,
            "score": round(self.score, 3),
        }


NO_MATCH = MatchResult(matched=False)


def deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``overlay`` merged on top; mappings merge recursively, anything else is replaced."""
    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def normalize_section_key(section: str) -> str:
    """'Site & Ground' -> 'site_ground'."""
    return _NON_ALNUM_RE.sub("_", section.lower()).strip("_")


def score_keywords(text_lower: str, keywords: tuple[str, ...]) -> float:
    score = 0.0
    for keyword in keywords:
        if keyword and keyword in text_lower:
            score += min(len(keyword) / 3, MAX_KEYWORD_SCORE)
    return score


class CommentLibrary:
    """
    Keyword-tagged library of boilerplate remarks.

    ``defaults.yaml`` is loaded first and ``custom.yaml``, when present, is deep-merged
    over it. The merged mapping is compiled into a tree of groups and entries before
    any matching happens.
    """

    def __init__(self, *, root: Path = DEFAULT_COMMENTS_DIR) -> None:
        self.root = root
        self._sections: dict[str, CommentNode] = {}
        self._conclusions: dict[str, str] = {}
        self._loaded = False

    def load(self) -> None:
        if self._loaded:
            return

        raw = self._read_yaml(self.root / DEFAULTS_FILENAME)
        custom = self._read_yaml(self.root / CUSTOM_FILENAME)
        if custom:
            raw = deep_merge(raw, custom)

        self._sections = {}
        for key, value in raw.items():
            key = str(key)
            if key in METADATA_KEYS:
                continue
            node = _compile_node(key, value, key)
            if node is not None:
                self._sections[key] = node
        self._conclusions = _extract_conclusions(raw.get(CONCLUSIONS_KEY))
        self._loaded = True
        logger.info("Loaded comment library from %s (%d sections)", self.root, len(self._sections))

    def reload(self) -> None:
        self._loaded = False
        self._sections = {}
        self._conclusions = {}
        self.load()

    def sections(self) -> list[str]:
        self.load()
        return list(self._sections.keys())

    def match(self, text: str, section: str | None = None) -> MatchResult:
        self.load()
        text_lower = text.lower()
        best = NO_MATCH

        if section:
            section_key = normalize_section_key(section)
            node = self._sections.get(section_key)
            if node is not None:
                best = _search(node, text_lower, section_key, (section_key,), best)

        if best.score < SIGNIFICANT_SCORE:
            for section_key, node in self._sections.items():
                best = _search(node, text_lower, section_key, (section_key,), best)

        if best.matched:
            logger.debug("Comment match %s (score %.2f) for %r", best.path, best.score, text)
        return best

    def get_conclusion(self, bucket: str) -> str | None:
        self.load()
        return self._conclusions.get(bucket)

    def _read_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            logger.error("Failed to load %s: %s", path.name, exc)
            return {}
        if payload is None:
            return {}
        if not isinstance(payload, dict):
            logger.warning("Ignoring %s: expected a mapping, got %s", path.name, type(payload).__name__)
            return {}
        return payload


def _compile_node(key: str, value: Any, path: str) -> CommentNode | None:
    if not isinstance(value, dict):
        logger.warning("Comment library: ignoring non-mapping node at '%s'", path)
        return None

    if "text" in value:
        text = value.get("text")
        if not isinstance(text, str):
            logger.warning("Comment library: entry '%s' has non-string text", path)
            return None
        raw_keywords = value.get("match") or []
        if not isinstance(raw_keywords, list):
            logger.warning("Comment library: entry '%s' has non-list match keywords", path)
            raw_keywords = []
        keywords = tuple(
            keyword.lower()
            for keyword in raw_keywords
            if isinstance(keyword, str) and keyword.strip()
        )
        return CommentEntry(key=key, text=text.strip(), keywords=keywords)

    children = []
    for child_key, child_value in value.items():
        child_key = str(child_key)
        child = _compile_node(child_key, child_value, f"{path}.{child_key}")
        if child is not None:
            children.append(child)
    return CommentGroup(key=key, children=tuple(children))


def _search(
    node: CommentNode,
    text_lower: str,
    section_key: str,
    path: tuple[str, ...],
    best: MatchResult,
) -> MatchResult:
    if isinstance(node, CommentEntry):
        score = score_keywords(text_lower, node.keywords)
        if score <= best.score:
            return best
        return MatchResult(
            matched=True,
            confidence="exact" if score >= SIGNIFICANT_SCORE else "partial",
            comment=node.text,
            section=section_key,
            key=node.key,
            path=".".join(path),
            score=score,
        )

    for child in node.children:
        best = _search(child, text_lower, section_key, (*path, child.key), best)
    return best


def _extract_conclusions(raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    conclusions: dict[str, str] = {}
    for bucket, value in raw.items():
        if isinstance(value, dict):
            value = value.get("text")
        if isinstance(value, str) and value.strip():
            conclusions[str(bucket)] = value.strip()
    return conclusions
