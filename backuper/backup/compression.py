"""
Archive creation for backup runs.

Folders are packed recursively into a single gzip-compressed tarball.
Inside the archive every member keeps its path relative to the parent of
the folder it came from, so ``/srv/data/a.txt`` is stored as ``data/a.txt``.
"""

import os
import tarfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional


ARCHIVE_EXTENSION = 'tar.gz'
TIMESTAMP_FORMAT = '%Y%m%d-%H%M%S'


class ArchiveError(Exception):
    """Raised when archive creation fails."""
    pass


def create_archive(folders: List[str], destination: str) -> str:
    """
    Create a tar.gz archive from a list of folders.

    The archive is written to ``<destination>.partial`` and renamed into
    place only once it is complete, so a failed run never leaves a file
    under the destination name.

    Args:
        folders: Directories (or single files) to include
        destination: Full path of the archive to create

    Returns:
        Path to the created archive

    Raises:
        ArchiveError: If any folder is missing or cannot be read
    """
    if not folders:
        raise ArchiveError("No folders provided")

    partial_path = f"{destination}.partial"

    try:
        with tarfile.open(partial_path, 'w:gz') as tar:
            for folder in folders:
                _add_to_archive(tar, folder)
        os.replace(partial_path, destination)
        return destination
    except ArchiveError:
        _remove_quietly(partial_path)
        raise
    except Exception as e:
        _remove_quietly(partial_path)
        raise ArchiveError(f"Failed to create archive: {e}")


def _add_to_archive(tar: tarfile.TarFile, folder: str):
    """
    Add one folder to the archive, walking it recursively.

    Args:
        tar: Open TarFile
        folder: Directory or file to add
    """
    source = Path(folder)

    if not source.exists():
        raise ArchiveError(f"Path does not exist: {folder}")

    # Keep the folder's own name as the top-level entry
    arcname = source.resolve().name or source.resolve().anchor
    try:
        tar.add(str(source), arcname=arcname, recursive=True)
    except OSError as e:
        raise ArchiveError(f"Failed to add {folder} to archive: {e}")


def generate_archive_filename(name_prefix: str, now: Optional[datetime] = None) -> str:
    """
    Generate the archive filename for a run.

    Format: {name_prefix}-{YYYYMMDD}-{HHMMSS}.tar.gz

    Args:
        name_prefix: Series prefix from configuration
        now: Timestamp to use (defaults to the local clock)

    Returns:
        Filename (without path)
    """
    if now is None:
        now = datetime.now()
    return f"{name_prefix}-{now.strftime(TIMESTAMP_FORMAT)}.{ARCHIVE_EXTENSION}"


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        ArchiveError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise ArchiveError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise ArchiveError(f"Failed to get archive size: {e}")


def _remove_quietly(path: str):
    if os.path.exists(path):
        try:
            os.remove(path)
        except OSError:
            pass
