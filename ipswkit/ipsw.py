"""Reading files out of IPSW firmware archives and unpacked IPSW directories."""

from __future__ import annotations

import os
import plistlib
import re
import shutil
import sys
import threading
import zipfile
from typing import IO, Any, Callable, Optional
from xml.parsers.expat import ExpatError

__all__ = [
    "IpswError",
    "ExtractionCancelled",
    "IpswArchive",
    "is_directory",
    "cancel",
    "print_info",
]

BUFSIZE = 0x100000
_ZIP_MAGIC = b"PK\x03\x04"
_NULL = "(null)"

_cancel_event = threading.Event()

ProgressCallback = Callable[[float], None]


class IpswError(OSError):
    """An IPSW archive or one of its files cannot be read or written."""


class ExtractionCancelled(IpswError):
    """An extraction was stopped by :func:`cancel`."""


def cancel() -> None:
    """Ask the running extraction to stop after its current chunk."""
    _cancel_event.set()


def is_directory(path: str) -> bool:
    """Whether ``path`` is an unpacked IPSW directory."""
    return os.path.isdir(path)


def _load_xml_plist(data: bytes, name: str) -> Any:
    try:
        return plistlib.loads(data, fmt=plistlib.FMT_XML)
    except (plistlib.InvalidFileException, ExpatError, ValueError) as exc:
        raise IpswError(f"failed to parse {name}") from exc


class IpswArchive:
    """An IPSW given either as a zip file or as an unpacked directory."""

    def __init__(self, path: str) -> None:
        self.path = os.fspath(path)
        self._closed = False
        try:
            st = os.stat(self.path)
        except OSError as exc:
            raise IpswError(f"'{self.path}': {exc.strerror}") from exc
        self._zip: Optional[zipfile.ZipFile] = None
        if not os.path.isdir(self.path) and st is not None:
            try:
                self._zip = zipfile.ZipFile(self.path)
            except (zipfile.BadZipFile, OSError) as exc:
                raise IpswError(f"cannot open zip archive '{self.path}'") from exc

    @property
    def is_directory(self) -> bool:
        """Whether this archive is an unpacked directory."""
        return self._zip is None

    def close(self) -> None:
        """Release the underlying zip file, if any."""
        if self._zip is not None:
            self._zip.close()
            self._zip = None
        self._closed = True

    def __enter__(self) -> "IpswArchive":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise IpswError(f"archive '{self.path}' is closed")

    def _member(self, infile: str) -> zipfile.ZipInfo:
        assert self._zip is not None
        try:
            return self._zip.getinfo(infile)
        except KeyError as exc:
            raise IpswError(f"'{infile}' not found in archive") from exc

    def _file_path(self, infile: str) -> str:
        return f"{self.path}/{infile}"

    def file_exists(self, infile: str) -> bool:
        """Whether ``infile`` is present (and readable, for directories)."""
        self._check_open()
        if self._zip is not None:
            return infile in self._zip.NameToInfo
        return os.access(self._file_path(infile), os.R_OK)

    def get_file_size(self, infile: str) -> int:
        """Uncompressed size of ``infile`` in bytes."""
        self._check_open()
        if self._zip is not None:
            return self._member(infile).file_size
        try:
            return os.stat(self._file_path(infile)).st_size
        except OSError as exc:
            raise IpswError(f"'{infile}': {exc.strerror}") from exc

    def extract_to_file(
        self,
        infile: str,
        outfile: str,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        """Copy ``infile`` to ``outfile``.

        ``progress``, when given, is called with the percentage done after
        every chunk. Raises :class:`ExtractionCancelled` if :func:`cancel`
        was called while copying.
        """
        self._check_open()
        _cancel_event.clear()
        if self._zip is not None:
            self._extract_zip_member(infile, outfile, progress)
        else:
            self._copy_directory_file(infile, outfile, progress)
        if _cancel_event.is_set():
            raise ExtractionCancelled(f"extraction of '{infile}' was cancelled")

    def _extract_zip_member(
        self, infile: str, outfile: str, progress: Optional[ProgressCallback]
    ) -> None:
        assert self._zip is not None
        info = self._member(infile)
        total = info.file_size
        try:
            fo = open(outfile, "wb")
        except OSError as exc:
            raise IpswError(f"Unable to open output file: {outfile}") from exc
        with fo, self._zip.open(info) as fi:
            done = 0
            while done < total and not _cancel_event.is_set():
                try:
                    chunk = fi.read(min(BUFSIZE, total - done))
                except (zipfile.BadZipFile, OSError) as exc:
                    raise IpswError(f"failed to read '{infile}'") from exc
                if not chunk:
                    raise IpswError(f"unexpected end of data in '{infile}'")
                try:
                    fo.write(chunk)
                except OSError as exc:
                    raise IpswError(f"failed to write '{outfile}'") from exc
                done += len(chunk)
                if progress is not None:
                    progress(done / total * 100.0)

    def _copy_directory_file(
        self, infile: str, outfile: str, progress: Optional[ProgressCallback]
    ) -> None:
        filepath = self._file_path(infile)
        if not os.path.exists(filepath):
            raise IpswError(f"realpath failed on {filepath}")
        source = os.path.realpath(filepath)
        if os.path.exists(outfile) and os.path.realpath(outfile) == source:
            return
        try:
            fi = open(source, "rb")
        except OSError as exc:
            raise IpswError(f"fopen: {source}: {exc.strerror}") from exc
        with fi:
            total = os.fstat(fi.fileno()).st_size
            try:
                fo = open(outfile, "wb")
            except OSError as exc:
                raise IpswError(f"fopen: {outfile}: {exc.strerror}") from exc
            with fo:
                done = 0
                while not _cancel_event.is_set():
                    chunk = fi.read(BUFSIZE)
                    if not chunk:
                        break
                    try:
                        fo.write(chunk)
                    except OSError as exc:
                        raise IpswError("fwrite failed") from exc
                    done += len(chunk)
                    if progress is not None:
                        progress(done / total * 100.0 if total else 100.0)

    def extract_to_memory(self, infile: str) -> bytes:
        """Return the whole contents of ``infile``."""
        self._check_open()
        if self._zip is not None:
            info = self._member(infile)
            try:
                data = self._zip.read(info)
            except (zipfile.BadZipFile, OSError) as exc:
                raise IpswError(f"failed to read '{infile}'") from exc
            if len(data) != info.file_size:
                raise IpswError(f"short read on '{infile}'")
            return data
        filepath = self._file_path(infile)
        try:
            with open(filepath, "rb") as f:
                return f.read()
        except OSError as exc:
            raise IpswError(f"failed to read {filepath}: {exc.strerror}") from exc

    def extract_build_manifest(self) -> tuple[Any, bool]:
        """Return the build manifest and whether TSS personalisation applies.

        Older firmwares ship ``BuildManifesto.plist`` and need no
        personalisation; it is preferred when present.
        """
        if self.file_exists("BuildManifesto.plist"):
            try:
                data = self.extract_to_memory("BuildManifesto.plist")
            except IpswError:
                pass
            else:
                return _load_xml_plist(data, "BuildManifesto.plist"), False
        data = self.extract_to_memory("BuildManifest.plist")
        return _load_xml_plist(data, "BuildManifest.plist"), True

    def extract_restore_plist(self) -> Any:
        """Return the parsed ``Restore.plist``."""
        return _load_xml_plist(self.extract_to_memory("Restore.plist"), "Restore.plist")


_C_UINT = re.compile(r"\s*([+-]?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)")


def _strtoull(text: str) -> int:
    match = _C_UINT.match(text)
    if not match:
        return 0
    sign, digits = match.groups()
    if digits[:2].lower() == "0x":
        value = int(digits[2:], 16)
    elif digits.startswith("0"):
        value = int(digits, 8)
    else:
        value = int(digits)
    if sign == "-":
        value = -value
    return value & 0xFFFFFFFFFFFFFFFF


def _uint_value(node: Any) -> int:
    if isinstance(node, str):
        return _strtoull(node)
    if isinstance(node, int) and not isinstance(node, bool):
        return node
    return 0


def _get_path(node: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _str(value: Any) -> str:
    return value if isinstance(value, str) else _NULL


def _read_manifest(path: str) -> Any:
    try:
        st = os.stat(path)
    except OSError as exc:
        raise IpswError(f"'{path}': {exc.strerror}") from exc
    thepath = path
    if os.path.isdir(path) and st is not None:
        thepath = f"{path}/BuildManifest.plist"
        if not os.path.exists(thepath):
            raise IpswError(f"'{thepath}': No such file or directory")
    try:
        with open(thepath, "rb") as f:
            magic = f.read(4)
    except OSError as exc:
        raise IpswError(f"Can't open '{thepath}': {exc.strerror}") from exc
    if len(magic) != 4:
        raise IpswError(f"Failed to read from '{path}'")
    if magic == _ZIP_MAGIC:
        with IpswArchive(thepath) as archive:
            data = archive.extract_to_memory("BuildManifest.plist")
    else:
        with open(thepath, "rb") as f:
            data = f.read()
    try:
        return plistlib.loads(data)
    except (plistlib.InvalidFileException, ExpatError, ValueError) as exc:
        raise IpswError("failed to parse BuildManifest.plist") from exc


def print_info(path: str, out: Optional[IO[str]] = None) -> None:
    """Describe the firmware at ``path``: versions, devices and identities.

    ``path`` may be an IPSW file, an unpacked directory or a manifest file.
    """
    out = sys.stdout if out is None else out
    manifest = _read_manifest(path)
    if not isinstance(manifest, dict):
        manifest = {}

    out.write(
        f"Product Version: {_str(manifest.get('ProductVersion'))}"
        f"   Build: {_str(manifest.get('ProductBuildVersion'))}\n"
    )
    out.write("Supported Product Types:")
    product_types = manifest.get("SupportedProductTypes")
    if isinstance(product_types, list):
        for item in product_types:
            out.write(f" {_str(item)}")
    out.write("\n")
    out.write("Build Identities:\n")

    groups: dict[Any, dict[str, Any]] = {}
    identities = manifest.get("BuildIdentities")
    if isinstance(identities, list):
        for identity in identities:
            variant = _get_path(identity, "Info", "Variant")
            group = groups.get(variant)
            if group is None:
                group = {
                    "RestoreBehavior": _get_path(identity, "Info", "RestoreBehavior"),
                    "Entries": [],
                }
                groups[variant] = group
            group["Entries"].append(identity)

    for number, (variant, group) in enumerate(groups.items(), start=1):
        out.write(
            f"  [{number}] Variant: {_str(variant)}"
            f"   Behavior: {_str(group['RestoreBehavior'])}\n"
        )
        for identity in group["Entries"]:
            chip_id = _uint_value(_get_path(identity, "ApChipID")) & 0xFFFFFFFF
            board_id = _uint_value(_get_path(identity, "ApBoardID")) & 0xFFFFFFFF
            hwmodel = _str(_get_path(identity, "Info", "DeviceClass"))
            out.write(
                f"    ChipID: {chip_id:04x}   BoardID: {board_id:02x}"
                f"   Model: {hwmodel}\n"
            )