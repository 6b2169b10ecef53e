"""Incremental, content-addressed skill indexer.

Each pass hashes every ``SKILL.md`` under the configured source roots,
re-embeds only the files whose hash changed (or all of them in full mode),
and drops records for every indexed file the pass did not see, including
files whose whole source root is gone or no longer configured.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .config import ImpressionismConfig
from .errors import SkillIndexError, StoreError
from .semantic import Embedder, embed_texts, hash_bytes
from .skill_files import discover_skill_files, parse_skill_file
from .store import FileHash, Skill, SkillSource, SkillStore, skill_id_for_path

logger = logging.getLogger(__name__)


class IndexMode(str, Enum):
    FULL = "full"
    QUICK = "quick"
    DEFAULT = "default"

    @classmethod
    def from_flags(cls, *, force: bool = False, quick: bool = False) -> IndexMode:
        if force:
            return cls.FULL
        if quick:
            return cls.QUICK
        return cls.DEFAULT


@dataclass(frozen=True)
class SkillSourceDir:
    path: Path
    source: SkillSource


@dataclass
class IndexFailure:
    path: str
    error: str


@dataclass
class IndexReport:
    mode: IndexMode
    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    removed: int = 0
    failures: list[IndexFailure] = field(default_factory=list)
    indexed_paths: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "mode": self.mode.value,
            "indexed": self.indexed,
            "skipped": self.skipped,
            "failed": self.failed,
            "removed": self.removed,
            "failures": [{"path": f.path, "error": f.error} for f in self.failures],
        }


def default_skill_sources(
    config: ImpressionismConfig, workspace: str | Path | None = None
) -> list[SkillSourceDir]:
    sources = [SkillSourceDir(Path(config.user_skills_dir).expanduser(), SkillSource.USER)]
    if workspace is not None:
        sources.append(
            SkillSourceDir(Path(workspace).expanduser() / ".claude" / "skills", SkillSource.PROJECT)
        )
    plugins_root = Path(config.plugins_dir).expanduser()
    if plugins_root.is_dir():
        for skills_dir in sorted(plugins_root.rglob("skills")):
            if skills_dir.is_dir():
                sources.append(SkillSourceDir(skills_dir, SkillSource.PLUGIN))
    for extra in config.extra_skill_dirs:
        sources.append(SkillSourceDir(Path(extra).expanduser(), SkillSource.USER))
    return sources


class SkillIndexer:
    def __init__(self, store: SkillStore, embedder: Embedder | None = None) -> None:
        self.store = store
        self.embedder = embedder

    def index(
        self, sources: list[SkillSourceDir], mode: IndexMode = IndexMode.DEFAULT
    ) -> IndexReport:
        report = IndexReport(mode=mode)
        seen: set[str] = set()
        for source_dir in sources:
            root = source_dir.path.expanduser().resolve()
            for skill_path in discover_skill_files(root):
                path = str(skill_path.resolve())
                if path in seen:
                    continue
                seen.add(path)
                try:
                    if self._index_file(Path(path), source_dir.source, mode):
                        report.indexed += 1
                        report.indexed_paths.append(path)
                    else:
                        report.skipped += 1
                except SkillIndexError as exc:
                    logger.warning("skill index failed for %s: %s", path, exc.reason)
                    report.failed += 1
                    report.failures.append(IndexFailure(path=path, error=exc.reason))
        report.removed = self._remove_missing(seen)
        logger.info(
            "index pass (%s): indexed=%d skipped=%d failed=%d removed=%d",
            mode.value,
            report.indexed,
            report.skipped,
            report.failed,
            report.removed,
        )
        return report

    def _index_file(self, path: Path, source: SkillSource, mode: IndexMode) -> bool:
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise SkillIndexError(str(path), f"read failed: {exc}") from exc
        content_hash = hash_bytes(data)
        if mode is not IndexMode.FULL:
            existing = self.store.get_file_hash(str(path))
            if existing is not None and existing.content_hash == content_hash:
                self.store.touch_file_hash(str(path))
                return False

        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SkillIndexError(str(path), "file is not valid UTF-8") from exc
        parsed = parse_skill_file(path, text)
        embedding = self._embed(path, parsed.embedding_text())

        now = self.store.now_iso()
        skill = Skill(
            id=skill_id_for_path(path),
            name=parsed.name,
            path=str(path),
            description=parsed.description,
            embedding=embedding,
            metadata=parsed.metadata,
            content_hash=content_hash,
            indexed_at=now,
            source=source,
        )
        self.store.upsert_skill_with_hash(
            skill, FileHash(path=str(path), content_hash=content_hash, last_checked=now)
        )
        logger.debug("indexed skill %s (%s)", skill.name, path)
        return True

    def _embed(self, path: Path, text: str) -> list[float]:
        try:
            vectors = embed_texts([text], self.embedder)
        except StoreError:
            raise
        except Exception as exc:
            raise SkillIndexError(str(path), f"embedding failed: {exc}") from exc
        if not vectors or not vectors[0]:
            raise SkillIndexError(str(path), "embedding unavailable")
        return [float(x) for x in vectors[0]]

    def _remove_missing(self, seen: set[str]) -> int:
        removed = 0
        for file_hash in self.store.list_file_hashes():
            if file_hash.path in seen:
                continue
            if self.store.delete_skill_path(file_hash.path):
                removed += 1
                logger.info("removed skill record for %s", file_hash.path)
        return removed

    def pending_changes(self, sources: list[SkillSourceDir]) -> dict[str, int]:
        """Count files a default pass would touch, without embedding anything."""

        new = changed = 0
        seen: set[str] = set()
        for source_dir in sources:
            root = source_dir.path.expanduser().resolve()
            for skill_path in discover_skill_files(root):
                path = str(skill_path.resolve())
                if path in seen:
                    continue
                seen.add(path)
                existing = self.store.get_file_hash(path)
                if existing is None:
                    new += 1
                    continue
                try:
                    content_hash = hash_bytes(skill_path.read_bytes())
                except OSError:
                    changed += 1
                    continue
                if content_hash != existing.content_hash:
                    changed += 1
        hashes = self.store.list_file_hashes()
        removed = sum(1 for file_hash in hashes if file_hash.path not in seen)
        return {"new": new, "changed": changed, "removed": removed}
