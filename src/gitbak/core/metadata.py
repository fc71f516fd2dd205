"""File metadata capture, reapplication and the backup manifest.

Metadata travels beside the copied content: mode, ownership, extended
attributes and modification time are recorded at backup time in
``<backup-root>/.gitbak_metadata.json`` and reapplied after a restore.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import re
import stat
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .errors import MetadataError

logger = logging.getLogger(__name__)

MANIFEST_NAME = ".gitbak_metadata.json"

_TIMESTAMP_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(?P<frac>\d{1,9}))?(?P<tz>Z|[+-]\d{2}:\d{2})$"
)


@dataclass
class Xattr:
    """An extended attribute; ``value`` is base64 text."""

    name: str
    value: str

    @classmethod
    def from_bytes(cls, name: str, raw: bytes) -> "Xattr":
        """Build an attribute from its raw value."""
        return cls(name=name, value=base64.b64encode(raw).decode("ascii"))

    def raw(self) -> bytes:
        """Return the decoded attribute value."""
        return base64.b64decode(self.value)


@dataclass
class FileMetadata:
    """Metadata recorded for one backed-up file or directory.

    Attributes:
        path: Forward-slash path relative to the root it will be applied to.
        mode: Full ``st_mode`` (type and permission bits).
        uid: Owning user id.
        gid: Owning group id.
        xattrs: Extended attributes in the order they were listed.
        modified: Modification time, ISO 8601 UTC with nanoseconds.
    """

    path: str
    mode: int
    uid: int
    gid: int
    xattrs: List[Xattr] = field(default_factory=list)
    modified: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileMetadata":
        """Build a record from its JSON form.

        Raises:
            MetadataError: If required keys are missing or mistyped.
        """
        try:
            return cls(
                path=str(data["path"]),
                mode=int(data["mode"]),
                uid=int(data["uid"]),
                gid=int(data["gid"]),
                xattrs=[Xattr(name=x["name"], value=x["value"]) for x in data.get("xattrs") or []],
                modified=str(data.get("modified", "")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MetadataError(f"invalid metadata record {data!r}: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        """Return the JSON form of this record."""
        return asdict(self)

    @property
    def permissions(self) -> int:
        """Permission bits of :attr:`mode`."""
        return stat.S_IMODE(self.mode)

    @property
    def is_symlink(self) -> bool:
        """Whether the recorded entry was a symbolic link."""
        return stat.S_ISLNK(self.mode)


class XattrHandler:
    """Reads and writes extended attributes.

    The base class is the explicit no-op used where the platform has no
    xattr support: it reports no attributes and ignores writes.
    """

    supported = False

    def list(self, path: Path) -> List[Xattr]:
        """Return the attributes of ``path`` without following links."""
        return []

    def set(self, path: Path, xattr: Xattr) -> None:
        """Set one attribute on ``path`` without following links."""


NullXattrHandler = XattrHandler


class OsXattrHandler(XattrHandler):
    """Extended attributes through ``os.listxattr`` and friends (Linux)."""

    supported = True

    def list(self, path: Path) -> List[Xattr]:
        """Return the attributes of ``path``.

        Filesystems without xattr support yield an empty list.
        """
        try:
            names = os.listxattr(path, follow_symlinks=False)
        except OSError as e:
            logger.debug("Cannot list xattrs of %s: %s", path, e)
            return []
        result = []
        for name in sorted(names):
            try:
                raw = os.getxattr(path, name, follow_symlinks=False)
            except OSError as e:
                logger.debug("Cannot read xattr %s of %s: %s", name, path, e)
                continue
            result.append(Xattr.from_bytes(name, raw))
        return result

    def set(self, path: Path, xattr: Xattr) -> None:
        """Set one attribute on ``path``."""
        os.setxattr(path, xattr.name, xattr.raw(), follow_symlinks=False)


def default_xattr_handler() -> XattrHandler:
    """Return the best xattr handler for this platform."""
    if hasattr(os, "listxattr") and hasattr(os, "setxattr"):
        return OsXattrHandler()
    return NullXattrHandler()


def format_timestamp(mtime_ns: int) -> str:
    """Format nanoseconds since the epoch as ISO 8601 UTC with nanoseconds."""
    seconds, nanos = divmod(mtime_ns, 1_000_000_000)
    base = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
    return f"{base}.{nanos:09d}Z"


def parse_timestamp(value: str) -> int:
    """Parse a timestamp written by :func:`format_timestamp` back to nanoseconds.

    Offsets other than ``Z`` and fractions shorter than nine digits are
    accepted too.

    Raises:
        ValueError: If ``value`` is not a recognised timestamp.
    """
    match = _TIMESTAMP_RE.match(value.strip())
    if not match:
        raise ValueError(f"unrecognised timestamp {value!r}")
    tz = match.group("tz")
    dt = datetime.fromisoformat(match.group("base") + ("+00:00" if tz == "Z" else tz))
    nanos = int((match.group("frac") or "0").ljust(9, "0"))
    return int(dt.timestamp()) * 1_000_000_000 + nanos


def collect_metadata(
    path: Union[str, Path],
    base_path: Union[str, Path],
    xattr_handler: Optional[XattrHandler] = None,
) -> FileMetadata:
    """Capture the metadata of ``path`` itself (links are not followed).

    Args:
        path: Entry to inspect.
        base_path: Directory the recorded path is made relative to.
        xattr_handler: Extended attribute reader; defaults to the platform's.

    Raises:
        MetadataError: If the entry cannot be inspected.
    """
    path = Path(path)
    handler = xattr_handler if xattr_handler is not None else default_xattr_handler()
    try:
        st = os.lstat(path)
    except OSError as e:
        raise MetadataError(f"cannot stat {path}: {e}") from e
    rel = Path(os.path.relpath(path, base_path)).as_posix()
    return FileMetadata(
        path=rel,
        mode=st.st_mode,
        uid=st.st_uid,
        gid=st.st_gid,
        xattrs=handler.list(path),
        modified=format_timestamp(st.st_mtime_ns),
    )


def apply_metadata(
    root: Union[str, Path],
    meta: FileMetadata,
    dry_run: bool = False,
    xattr_handler: Optional[XattrHandler] = None,
) -> None:
    """Reapply a metadata record to ``root / meta.path``.

    Order: mode, owner/group, extended attributes, modification time.
    Ownership is only changed when running as root; otherwise a mismatch is
    logged as a warning and the rest is still applied.

    Raises:
        MetadataError: If the target is missing or an attribute cannot be set.
    """
    target = Path(root) / meta.path
    if not os.path.lexists(target):
        raise MetadataError(f"target does not exist: {target}")

    if dry_run:
        logger.info("[dry-run] Would apply metadata to %s", target)
        return

    handler = xattr_handler if xattr_handler is not None else default_xattr_handler()
    try:
        if not meta.is_symlink:
            os.chmod(target, meta.permissions)

        if os.geteuid() == 0:
            os.chown(target, meta.uid, meta.gid, follow_symlinks=False)
        elif meta.uid != os.getuid() or meta.gid != os.getgid():
            logger.warning(
                "Need root to set ownership for %s (uid: %d, gid: %d)", target, meta.uid, meta.gid
            )

        for xattr in meta.xattrs:
            handler.set(target, xattr)
    except OSError as e:
        raise MetadataError(f"cannot apply metadata to {target}: {e}") from e

    if not meta.modified:
        return
    try:
        mtime_ns = parse_timestamp(meta.modified)
    except ValueError as e:
        logger.warning("Not restoring modification time of %s: %s", target, e)
        return
    try:
        if meta.is_symlink and os.utime not in os.supports_follow_symlinks:
            return
        os.utime(target, ns=(time.time_ns(), mtime_ns), follow_symlinks=False)
    except OSError as e:
        raise MetadataError(f"cannot set modification time of {target}: {e}") from e


def manifest_path(backup_root: Union[str, Path]) -> Path:
    """Return the manifest location for a backup root."""
    return Path(backup_root) / MANIFEST_NAME


def save_manifest(backup_root: Union[str, Path], records: Iterable[FileMetadata]) -> Path:
    """Write the manifest, replacing any previous one.

    Raises:
        MetadataError: If the file cannot be written.
    """
    path = manifest_path(backup_root)
    data = [record.to_dict() for record in records]
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
    except OSError as e:
        raise MetadataError(f"cannot write manifest {path}: {e}") from e
    logger.debug("Wrote %d metadata records to %s", len(data), path)
    return path


def load_manifest(backup_root: Union[str, Path]) -> List[FileMetadata]:
    """Read the manifest.

    Raises:
        MetadataError: If the manifest is missing, unreadable or corrupt.
    """
    path = manifest_path(backup_root)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise MetadataError(f"cannot read manifest {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise MetadataError(f"corrupt manifest {path}: {e}") from e
    if not isinstance(data, list):
        raise MetadataError(f"corrupt manifest {path}: expected a JSON array")
    return [FileMetadata.from_dict(item) for item in data]
