import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from media import (
    ANIMATION_EXTENSIONS,
    STATIC_EXTENSIONS,
    MediaKind,
    MediaResult,
    MediaSource,
    extensions_for_kind,
)

ALL_EXTENSIONS = STATIC_EXTENSIONS + ANIMATION_EXTENSIONS


@dataclass(frozen=True)
class AssetMatch:
    path: Path
    score: int

    @property
    def is_gif(self) -> bool:
        return self.path.suffix.lower().lstrip(".") in ANIMATION_EXTENSIONS


def _is_unsafe_name(base_name: str) -> bool:
    if not base_name or base_name.startswith("."):
        return True
    return any(bad in base_name for bad in ("/", "\\", "..", "\x00"))


def normalize_text(text: str) -> str:
    kept = "".join(c for c in text.lower() if c.isalnum() or c.isspace())
    return " ".join(kept.split())


def _match_score(text: str, stem: str) -> int:
    if len(stem) < 3:
        # short stems only match the whole query, never a substring of it
        return 2000 if text == stem else 0
    if stem in text:
        return 1000 + len(stem)
    if text in stem:
        return 900 + len(text)
    stem_words = stem.split()
    text_words = text.split()
    hits = 0
    for sw in stem_words:
        if any(sw in tw or tw in sw for tw in text_words):
            hits += 1
    if not hits:
        return 0
    return hits * 100 // max(1, len(stem_words))


class LocalAssetResolver:
    """Looks up media in the fixed asset directory ("MyGo mode").

    Stem comparison is case-insensitive; an exact-case stem wins over other
    candidates, then the lexicographically first relative path.
    """

    def __init__(self, assets_dir: str) -> None:
        self.assets_dir = Path(assets_dir)

    def _root(self) -> Optional[Path]:
        if not self.assets_dir.is_dir():
            logging.error("assets directory not found: %s", self.assets_dir)
            return None
        return self.assets_dir.resolve()

    def _iter_files(self, root: Path):
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            for name in sorted(filenames):
                path = Path(dirpath) / name
                ext = path.suffix.lower().lstrip(".")
                if ext not in ALL_EXTENSIONS or not path.stem:
                    continue
                try:
                    real = path.resolve()
                except OSError:
                    continue
                if real != root and root not in real.parents:
                    logging.info("assets: skipping %s (outside %s)", path, root)
                    continue
                yield path

    def resolve_local(self, base_name: str, kind: MediaKind) -> Optional[MediaResult]:
        if _is_unsafe_name(base_name):
            logging.info("assets: rejecting unsafe name %r", base_name)
            return None
        try:
            root = self._root()
            if root is None:
                return None
            allowed = extensions_for_kind(kind)
            wanted = base_name.lower()
            candidates = []
            for path in self._iter_files(root):
                if path.suffix.lower().lstrip(".") not in allowed:
                    continue
                if path.stem.lower() != wanted:
                    continue
                exact = path.stem == base_name
                candidates.append((0 if exact else 1, str(path.relative_to(root)), path))
        except OSError as e:
            logging.warning("assets: lookup for %r failed: %s", base_name, e)
            return None
        if not candidates:
            logging.info("assets: no local match for %r (%s)", base_name, kind.value)
            return None
        candidates.sort(key=lambda c: (c[0], c[1]))
        path = candidates[0][2]
        logging.info("assets: local match for %r: %s", base_name, path)
        return MediaResult(source=MediaSource.LOCAL_ASSET, kind=kind, payload=path)

    def find_matching_assets(self, text: str, limit: int = 10) -> list[AssetMatch]:
        query = normalize_text(text or "")
        if not query:
            return []
        try:
            root = self._root()
            if root is None:
                return []
            matches = []
            for path in self._iter_files(root):
                score = _match_score(query, normalize_text(path.stem))
                if score > 0:
                    matches.append(AssetMatch(path=path, score=score))
        except OSError as e:
            logging.warning("assets: fuzzy search for %r failed: %s", text, e)
            return []
        matches.sort(key=lambda m: (-m.score, str(m.path)))
        return matches[:limit]

    def asset_url(self, match: AssetMatch, base_url: str) -> Optional[str]:
        root = self.assets_dir.resolve()
        try:
            rel = match.path.relative_to(root)
        except ValueError:
            logging.error("assets: %s is not under %s", match.path, root)
            return None
        encoded = "/".join(quote(part, safe="") for part in rel.parts)
        return base_url.rstrip("/") + "/" + encoded
