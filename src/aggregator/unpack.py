import logging
import os
import shutil
import stat
import zipfile
import zlib
from typing import List

from .errors import ArchiveFormatError, FilesystemError

logger = logging.getLogger("aggregator.unpack")

DEFAULT_DIR_MODE = 0o755
DEFAULT_FILE_MODE = 0o644


def extraction_dir(archive: str, archive_ext: str = ".zip") -> str:
    if not archive.lower().endswith(archive_ext.lower()):
        raise FilesystemError(f"Not a '{archive_ext}' archive path: {archive}")
    return archive[: len(archive) - len(archive_ext)]


def entry_mode(info: zipfile.ZipInfo) -> int:
    # unix permission bits live in the high word of external_attr
    mode = stat.S_IMODE(info.external_attr >> 16)
    if mode:
        return mode
    return DEFAULT_DIR_MODE if info.is_dir() else DEFAULT_FILE_MODE


def _target(dest: str, name: str) -> str:
    root = os.path.realpath(dest)
    path = os.path.realpath(os.path.join(root, name))
    if path != root and not path.startswith(root + os.sep):
        raise ArchiveFormatError(f"Archive entry escapes destination: {name}")
    return os.path.join(dest, name)


def _extract_entry(zf: zipfile.ZipFile, info: zipfile.ZipInfo, dest: str) -> str:
    path = _target(dest, info.filename)
    mode = entry_mode(info)

    if info.is_dir():
        os.makedirs(path, mode=mode, exist_ok=True)
        return ""

    os.makedirs(os.path.dirname(path), mode=DEFAULT_DIR_MODE, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with zf.open(info) as src, os.fdopen(fd, "wb") as out:
        shutil.copyfileobj(src, out, length=1024 * 1024)
    return path


def unpack_archive(src: str, dest: str) -> List[str]:
    """Extract every entry of ``src`` under ``dest`` and return the written file paths.

    An existing ``dest`` is taken as a finished extraction and yields ``[]``.
    Entries are extracted in archive order; the first failing entry aborts
    the whole call.
    """
    if os.path.exists(dest):
        logger.info(f"CACHED: archive={src} dir={dest}")
        return []

    try:
        zf = zipfile.ZipFile(src)
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        raise ArchiveFormatError(f"Not a valid zip archive: {src}: {e}") from e
    except OSError as e:
        raise FilesystemError(f"Cannot open archive {src}: {e}") from e

    unpacked: List[str] = []
    with zf:
        try:
            os.makedirs(dest, mode=DEFAULT_DIR_MODE, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Cannot create directory {dest}: {e}") from e

        for info in zf.infolist():
            try:
                path = _extract_entry(zf, info, dest)
            except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError) as e:
                raise ArchiveFormatError(f"Corrupt entry '{info.filename}' in {src}: {e}") from e
            except OSError as e:
                raise FilesystemError(f"Cannot extract '{info.filename}' to {dest}: {e}") from e
            if path:
                unpacked.append(path)

    logger.info(f"UNPACKED: archive={src} dir={dest} files={len(unpacked)}")
    return unpacked
