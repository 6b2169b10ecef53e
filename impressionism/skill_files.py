from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import SkillIndexError

SKILL_FILENAME = "SKILL.md"
EMBED_BODY_CHARS = 2000

_FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n(.*))?$", re.DOTALL)


@dataclass
class ParsedSkill:
    name: str
    description: str | None
    body: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def embedding_text(self) -> str:
        parts = [self.name]
        if self.description:
            parts.append(self.description)
        if self.body:
            parts.append(self.body[:EMBED_BODY_CHARS])
        return "\n\n".join(parts)


def discover_skill_files(root: Path) -> list[Path]:
    if not root.is_dir():
        return []
    found: list[Path] = []
    for path in root.rglob(SKILL_FILENAME):
        relative = path.relative_to(root)
        if any(part.startswith(".") for part in relative.parts[:-1]):
            continue
        if path.is_file():
            found.append(path)
    return sorted(found)


def _first_paragraph(body: str) -> str | None:
    for block in re.split(r"\n{2,}", body.strip()):
        text = block.strip()
        if not text or text.startswith("#"):
            continue
        return " ".join(line.strip() for line in text.splitlines())
    return None


def parse_skill_file(path: Path, text: str) -> ParsedSkill:
    metadata: dict[str, Any] = {}
    body = text
    match = _FRONTMATTER_RE.match(text)
    if match:
        try:
            loaded = yaml.safe_load(match.group(1))
        except yaml.YAMLError as exc:
            raise SkillIndexError(str(path), f"invalid YAML frontmatter: {exc}") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise SkillIndexError(str(path), "frontmatter must be a mapping")
        metadata = loaded
        body = (match.group(2) or "").strip()

    name = metadata.get("name")
    if not isinstance(name, str) or not name.strip():
        name = path.parent.name
    description = metadata.get("description")
    if not isinstance(description, str) or not description.strip():
        description = _first_paragraph(body)
    return ParsedSkill(
        name=name.strip(),
        description=description.strip() if description else None,
        body=body.strip(),
        # Dates and other YAML scalars are stringified so metadata stays JSON-safe.
        metadata={str(k): _json_safe(v) for k, v in metadata.items()},
    )


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return str(value)
