"""Finding, downloading and verifying firmware images."""

from __future__ import annotations

import hashlib
import logging
import os
import re
import sys
import urllib.error
import urllib.request
from typing import Any, Callable, Optional, Union

from .json_plist import json_to_plist
from .locking import LockError, LockFile

__all__ = [
    "FirmwareError",
    "PurchaseRequiredError",
    "ChecksumMismatchError",
    "download_to_buffer",
    "download_to_file",
    "get_signed_firmwares",
    "get_latest_fw",
    "sha1_matches",
    "download_fw",
    "download_latest_fw",
]

_log = logging.getLogger(__name__)

SIGNED_FIRMWARES_URL = "https://api.ipsw.me/v4/device/{product}"
_VERSIONS_KEY = "MobileDeviceSoftwareVersionsByVersion"
_DEVICE_VERSIONS_KEY = "MobileDeviceSoftwareVersions"
_SHA1_SIZE = 20
_ZERO_SHA1 = bytes(_SHA1_SIZE)
_CHUNK = 8192
_U64_MAX = 2**64 - 1

Fetcher = Callable[[str], Union[bytes, str]]
Downloader = Callable[[str, str], Any]


class FirmwareError(Exception):
    """Firmware information could not be found or a download failed."""


class PurchaseRequiredError(FirmwareError):
    """The firmware can only be obtained after a purchase."""


class ChecksumMismatchError(FirmwareError):
    """A downloaded file does not have the expected SHA-1 checksum."""


def download_to_buffer(url: str) -> bytes:
    """Fetch ``url`` and return its body."""
    try:
        with urllib.request.urlopen(url) as response:
            return response.read()
    except (urllib.error.URLError, OSError, ValueError) as exc:
        raise FirmwareError(f"Download from {url} failed") from exc


def _print_progress(percent: float) -> None:
    width = 50
    filled = int(width * min(max(percent, 0.0), 100.0) / 100.0)
    sys.stderr.write(f"\r[{'=' * filled}{' ' * (width - filled)}] {percent:5.1f}%")
    sys.stderr.flush()


def download_to_file(url: str, path: str, print_progress: bool = False) -> None:
    """Fetch ``url`` into the file ``path``, optionally showing progress."""
    try:
        with urllib.request.urlopen(url) as response, open(path, "wb") as out:
            length = response.headers.get("Content-Length") if response.headers else None
            total = int(length) if length and length.isdigit() else 0
            done = 0
            while chunk := response.read(0x10000):
                out.write(chunk)
                done += len(chunk)
                if print_progress and total:
                    _print_progress(done / total * 100.0)
        if print_progress:
            sys.stderr.write("\n")
    except (urllib.error.URLError, OSError, ValueError) as exc:
        raise FirmwareError(f"Download from {url} failed") from exc


def get_signed_firmwares(product: str, fetch: Optional[Fetcher] = None) -> list:
    """Return the firmware entries for ``product`` that are still signed."""
    if not product:
        raise FirmwareError("no product given")
    fetch = download_to_buffer if fetch is None else fetch
    url = SIGNED_FIRMWARES_URL.format(product=product)
    try:
        raw = fetch(url)
    except FirmwareError:
        raise
    except OSError as exc:
        raise FirmwareError(f"Download from {url} failed") from exc
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    try:
        data = json_to_plist(text)
    except ValueError as exc:
        raise FirmwareError("Failed to parse json data") from exc
    if not isinstance(data, dict):
        raise FirmwareError("Failed to parse json data")

    identifier = data.get("identifier")
    if not isinstance(identifier, str):
        raise FirmwareError("Unexpected json data returned - missing 'identifier'")
    if identifier != product:
        raise FirmwareError("Unexpected json data returned - failed to read identifier")
    firmwares = data.get("firmwares")
    if not isinstance(firmwares, list):
        raise FirmwareError("Unexpected json data returned - missing 'firmwares'")

    return [
        fw
        for fw in firmwares
        if isinstance(fw, dict) and fw.get("signed") is True
    ]


_DECIMAL = re.compile(r"\s*([+-]?)(\d+)")
_HEX_BYTE = re.compile(r"[0-9a-fA-F]{1,2}")


def _strtoull10(text: str) -> int:
    match = _DECIMAL.match(text)
    if not match:
        return 0
    sign, digits = match.groups()
    value = min(int(digits), _U64_MAX)
    if sign == "-":
        value = (-value) & _U64_MAX
    return value


def _get_path(node: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _sha1_from_hex(text: str) -> bytes:
    if len(text) != 2 * _SHA1_SIZE:
        return _ZERO_SHA1
    out = bytearray()
    for start in range(0, len(text), 2):
        match = _HEX_BYTE.match(text, start, start + 2)
        out.append(int(match.group(), 16) if match else 0)
    return bytes(out)


def get_latest_fw(version_data: Any, product: str) -> tuple[str, bytes]:
    """Find the newest firmware for ``product`` in the version data.

    Returns the firmware URL and its SHA-1 digest; the digest is twenty zero
    bytes when the data does not give one.
    """
    by_version = _get_path(version_data, _VERSIONS_KEY)
    if by_version is None:
        raise FirmwareError(f"Can't find {_VERSIONS_KEY} dict in version data")
    if not isinstance(by_version, dict):
        raise FirmwareError("Can't get dict iter")

    major = max(
        (
            _strtoull10(key)
            for key in by_version
            if _get_path(by_version, key, _DEVICE_VERSIONS_KEY, product) is not None
        ),
        default=0,
    )
    if major == 0:
        raise FirmwareError("Can't find major version?!")

    majstr = str(major)

    def device_node(*keys: str) -> Any:
        return _get_path(
            version_data, _VERSIONS_KEY, majstr, _DEVICE_VERSIONS_KEY, product, *keys
        )

    restore = device_node("Unknown", "Universal", "Restore")
    if restore is None:
        raise FirmwareError("Can't get Unknown/Universal/Restore node?!")
    build_version = _get_path(restore, "BuildVersion")
    if not isinstance(build_version, str):
        raise FirmwareError("Can't get build version node?!")

    node = device_node(build_version)
    if node is None:
        raise FirmwareError(f"Can't get {_DEVICE_VERSIONS_KEY}/{build_version} node?!")

    same_as = _get_path(node, "SameAs")
    if isinstance(same_as, str):
        node = device_node(same_as)
        if not isinstance(node, dict) or not node:
            raise FirmwareError(f"Can't get {_DEVICE_VERSIONS_KEY}/{product} dict")

    update_build = _get_path(node, "Update", "BuildVersion")
    if isinstance(update_build, str):
        node = device_node(update_build)

    fwurl = _get_path(node, "Restore", "FirmwareURL")
    if not isinstance(fwurl, str):
        raise FirmwareError("Can't get FirmwareURL node")

    sha1 = _ZERO_SHA1
    sha1_text = _get_path(node, "Restore", "FirmwareSHA1")
    if isinstance(sha1_text, str):
        sha1 = _sha1_from_hex(sha1_text)
    return fwurl, sha1


def sha1_matches(path: str, expected: bytes) -> bool:
    """Whether the SHA-1 digest of the file at ``path`` equals ``expected``."""
    digest = hashlib.sha1()
    with open(path, "rb") as f:
        while chunk := f.read(_CHUNK):
            digest.update(chunk)
    return digest.digest() == bytes(expected)


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except OSError:
        pass


def _default_download(url: str, path: str) -> None:
    download_to_file(url, path, True)


def download_fw(
    fwurl: str,
    sha1: Optional[bytes] = None,
    todir: Optional[str] = None,
    download: Optional[Downloader] = None,
) -> str:
    """Make sure the firmware at ``fwurl`` is present locally and return its path.

    An existing file is kept when its checksum matches ``sha1`` or when no
    checksum is known; otherwise the file is downloaded again and verified.
    """
    slash = fwurl.rfind("/")
    if slash < 0:
        raise FirmwareError("can't get local filename for firmware ipsw")
    fwfn = fwurl[slash + 1:]
    fwlfn = f"{todir}/{fwfn}" if todir else fwfn
    expected = _ZERO_SHA1 if sha1 is None else bytes(sha1)
    have_sha1 = expected != _ZERO_SHA1
    download = _default_download if download is None else download

    lock = LockFile(f"{fwlfn}.lock")
    try:
        lock.acquire()
    except LockError:
        _log.warning("Could not lock file '%s'", lock.filename)

    try:
        need_dl = False
        if os.path.isfile(fwlfn) and os.access(fwlfn, os.R_OK):
            if have_sha1:
                _log.info("Verifying '%s'...", fwlfn)
                if sha1_matches(fwlfn, expected):
                    _log.info("Checksum matches.")
                else:
                    _log.info("Checksum does not match.")
                    need_dl = True
        else:
            need_dl = True

        if need_dl:
            if fwurl.startswith("protected:"):
                raise PurchaseRequiredError(
                    f"Can't download '{fwfn}' because it needs a purchase."
                )
            _remove_quietly(fwlfn)
            _log.info("Downloading firmware (%s)", fwurl)
            download(fwurl, fwlfn)
            if have_sha1:
                _log.info("Verifying '%s'...", fwlfn)
                try:
                    matches = sha1_matches(fwlfn, expected)
                except OSError as exc:
                    raise FirmwareError(
                        f"Can't open '{fwlfn}' for checksum verification"
                    ) from exc
                if not matches:
                    _remove_quietly(fwlfn)
                    raise ChecksumMismatchError(
                        "File download failed (checksum mismatch)."
                    )
                _log.info("Checksum matches.")
        return fwlfn
    finally:
        if lock.locked:
            try:
                lock.release()
            except LockError:
                _log.warning("Could not unlock file '%s'", lock.filename)


def download_latest_fw(
    version_data: Any,
    product: str,
    todir: Optional[str] = None,
    download: Optional[Downloader] = None,
) -> str:
    """Download the newest firmware for ``product`` and return its local path."""
    try:
        fwurl, sha1 = get_latest_fw(version_data, product)
    except FirmwareError as exc:
        raise FirmwareError("can't get URL for latest firmware") from exc
    slash = fwurl.rfind("/")
    if slash < 0:
        raise FirmwareError("can't get local filename for firmware ipsw")
    _log.info("Latest firmware is %s", fwurl[slash + 1:])
    return download_fw(fwurl, sha1, todir, download)