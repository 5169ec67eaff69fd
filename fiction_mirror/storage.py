"""Archive persistence: chapter files and the manifest."""
import hashlib
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Set

from pydantic import ValidationError

from fiction_mirror.exceptions import PersistenceError
from fiction_mirror.models import MANIFEST_VERSION, ArchiveManifest, ChapterRef
from fiction_mirror.normalizer import SlugGenerator

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
BACKUP_SUFFIX = ".bk"


def chapter_filename(ref: ChapterRef) -> str:
    """File name for a chapter, from its order and stable id at first save."""
    return f"{ref.order + 1:05d}-{SlugGenerator.generate_slug(ref.chapter_id, 'chapter')}.html"


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write via a temp file in the same directory, then rename over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="wb",
        delete=False,
        dir=str(path.parent),
        prefix=path.name,
        suffix=".tmp",
    ) as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_path = Path(tmp.name)
    try:
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


class ArchiveStore:
    """
    One directory per fiction: a file per chapter plus the manifest.

    Every write is atomic, so a crash leaves either the old or the new
    version of a file, never a torn one.
    """

    def __init__(self, root: Path, manifest_name: str = MANIFEST_NAME):
        self.root = Path(root)
        self.manifest_path = self.root / manifest_name
        self.backup_path = self.root / (manifest_name + BACKUP_SUFFIX)

    def chapter_path(self, filename: str) -> Path:
        return self.root / filename

    def load_manifest(self) -> Optional[ArchiveManifest]:
        """
        Read the manifest left by the previous run.

        Returns:
            The manifest, or None when the archive has none yet

        Raises:
            PersistenceError: manifest exists but cannot be read or understood
        """
        if not self.manifest_path.exists():
            return None
        try:
            raw = self.manifest_path.read_bytes()
            manifest = ArchiveManifest.model_validate_json(raw)
        except OSError as e:
            raise PersistenceError(self.manifest_path, str(e)) from e
        except ValidationError as e:
            raise PersistenceError(self.manifest_path, f"invalid manifest: {e}") from e

        if manifest.version > MANIFEST_VERSION:
            raise PersistenceError(
                self.manifest_path,
                f"manifest version {manifest.version} is newer than supported {MANIFEST_VERSION}",
            )
        logger.info(f"Loaded manifest with {len(manifest.entries)} chapters from {self.manifest_path}")
        return manifest

    def save_manifest(self, manifest: ArchiveManifest) -> None:
        data = manifest.model_dump_json(indent=2).encode("utf-8") + b"\n"
        try:
            atomic_write_bytes(self.manifest_path, data)
        except OSError as e:
            raise PersistenceError(self.manifest_path, str(e)) from e

    def backup_manifest(self) -> Optional[Path]:
        """Copy the current manifest aside before this run rewrites it."""
        if not self.manifest_path.exists():
            return None
        try:
            shutil.copyfile(self.manifest_path, self.backup_path)
        except OSError as e:
            raise PersistenceError(self.backup_path, str(e)) from e
        logger.info(f"Backup to {self.backup_path}")
        return self.backup_path

    def write_chapter(self, filename: str, content: str) -> Path:
        path = self.chapter_path(filename)
        try:
            atomic_write_bytes(path, content.encode("utf-8"))
        except OSError as e:
            raise PersistenceError(path, str(e)) from e
        return path

    def read_chapter(self, filename: str) -> str:
        path = self.chapter_path(filename)
        try:
            return path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise PersistenceError(path, str(e)) from e

    def intact_chapters(self, manifest: Optional[ArchiveManifest]) -> Set[str]:
        """Ids whose chapter file exists and still hashes to its fingerprint."""
        intact = set()
        if manifest is None:
            return intact
        for entry in manifest.entries:
            path = self.chapter_path(entry.filename)
            try:
                digest = hashlib.sha256(path.read_bytes()).hexdigest()
            except FileNotFoundError:
                logger.warning(f"Chapter file missing, will refetch if listed: {path}")
                continue
            except OSError as e:
                raise PersistenceError(path, str(e)) from e
            if digest == entry.fingerprint:
                intact.add(entry.chapter_id)
            else:
                logger.warning(f"Chapter file does not match manifest, will refetch if listed: {path}")
        return intact
