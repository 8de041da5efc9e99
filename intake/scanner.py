"""
Folder intake for bulk uploads.

Reads every image below a folder into source assets, ready to be enqueued.
Files that cannot be read are skipped and reported. Empty files are kept,
so they show up as failed queue items instead of silently disappearing.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from intake.models import SourceAsset

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = frozenset({
    ".jpg", ".jpeg", ".png", ".gif", ".bmp",
    ".tiff", ".tif", ".webp",
})


@dataclass
class FolderScan:
    """Result of reading a folder."""
    root: Path
    assets: list[SourceAsset] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)

    @property
    def empty_files(self) -> list[str]:
        return [asset.filename for asset in self.assets if not asset.data]


class AssetScanner:
    """
    Collects image files from a folder as SourceAssets.

    Hidden files and anything inside hidden folders are ignored. Assets are
    ordered by their path relative to the folder, case-insensitively, so a
    batch is always queued in the same order.
    """

    def __init__(self, recursive: bool = True, suffixes: frozenset[str] = IMAGE_SUFFIXES):
        self.recursive = recursive
        self.suffixes = frozenset(s.lower() for s in suffixes)

    def load(self, directory: str | Path) -> FolderScan:
        """
        Read every image in a folder.

        Args:
            directory: Folder holding the images.

        Returns:
            FolderScan with the assets and the files that were skipped.

        Raises:
            ValueError: If the folder doesn't exist or isn't a directory.
        """
        root = Path(directory)
        if not root.is_dir():
            reason = "is not a directory" if root.exists() else "does not exist"
            raise ValueError(f"Folder {reason}: {root}")

        scan = FolderScan(root=root)
        for path in self.find(root):
            name = path.relative_to(root).as_posix()
            try:
                data = path.read_bytes()
            except OSError as e:
                logger.warning(f"Skipping {name}: {e}")
                scan.skipped.append((name, str(e)))
                continue

            if not data:
                logger.warning(f"{name} is empty and will fail in the queue")
            scan.assets.append(SourceAsset(filename=path.name, data=data))

        logger.info(
            f"Read {len(scan.assets)} image(s) from {root}"
            + (f", skipped {len(scan.skipped)}" if scan.skipped else "")
        )
        return scan

    def find(self, root: Path) -> list[Path]:
        """Image paths below root in queueing order."""
        pattern = "**/*" if self.recursive else "*"
        try:
            paths = [path for path in root.glob(pattern) if self._wanted(root, path)]
        except PermissionError as e:
            logger.warning(f"Permission denied while listing {root}: {e}")
            paths = []
        return sorted(paths, key=lambda p: p.relative_to(root).as_posix().lower())

    def _wanted(self, root: Path, path: Path) -> bool:
        if path.suffix.lower() not in self.suffixes:
            return False
        if any(part.startswith(".") for part in path.relative_to(root).parts):
            return False
        return path.is_file()
