# ipswkit

A library for working with firmware restore archives (IPSW files or their
unpacked directories) and a few small formats that come with them.

## Modules

- `ipswkit.ipsw` — `IpswArchive` opens an archive that is either a zip file
  or an unpacked directory. It can tell whether a member exists
  (`file_exists`), give its uncompressed size (`get_file_size`), return its
  bytes (`extract_to_memory`) or copy it to a file (`extract_to_file`, with an
  optional progress callback that receives the percentage done).
  `extract_build_manifest` returns the parsed manifest and a flag saying
  whether personalisation applies: `BuildManifesto.plist` is preferred when
  present (flag `False`), otherwise `BuildManifest.plist` is read (flag
  `True`). `extract_restore_plist` returns the parsed `Restore.plist`.
  `print_info(path, out)` writes a summary of a build manifest — product
  version, build, supported product types, and build identities grouped by
  variant with chip ID, board ID and device class — for an IPSW file, an
  unpacked directory or a manifest file. `cancel()` stops a running
  extraction, which then raises `ExtractionCancelled`. `is_directory(path)`
  tells whether a path is an unpacked directory.
- `ipswkit.firmware` — `get_signed_firmwares(product, fetch)` asks a
  firmware catalogue for a product's firmwares and keeps the ones marked as
  signed. `get_latest_fw(version_data, product)` picks the newest firmware's
  URL and SHA-1 digest from a version-data dictionary. `download_fw` makes
  sure a firmware file is present locally, re-downloading when its checksum
  does not match, guarded by a `<file>.lock` lock file; `download_latest_fw`
  combines the two. `sha1_matches` checks a file's digest.
  `download_to_buffer` and `download_to_file` fetch URLs with `urllib`.
  Errors: `FirmwareError`, `PurchaseRequiredError` (for `protected:` URLs),
  `ChecksumMismatchError`.
- `ipswkit.jsmn` — a small, non-strict JSON tokenizer (`tokenize`,
  `Parser`) yielding `Token` spans. It raises `NotEnoughTokensError`,
  `InvalidJsonError` or `PartialJsonError`, all subclasses of `JsmnError`.
- `ipswkit.json_plist` — `json_to_plist` turns JSON text into dicts, lists,
  strings, integers and booleans. Numbers keep only their leading integer
  part, strings are not unescaped, and other bare values such as `null`
  become strings.
- `ipswkit.mbn` — `MbnFile.parse` recognises MBN v1/v2, plain `bin` and
  32-bit ELF baseband images by their magic bytes and reads the header;
  `MbnFile.update_sig_blob` overwrites the trailing signature, raising
  `MbnError` when the blob is larger than the image.
- `ipswkit.locking` — `LockFile`, an exclusive lock on a file, usable as a
  context manager; failures raise `LockError`.

## Examples

Reading from an archive:

```python
from ipswkit.ipsw import IpswArchive

with IpswArchive("firmware.ipsw") as archive:
    if archive.file_exists("Restore.plist"):
        restore = archive.extract_restore_plist()
    manifest, personalised = archive.extract_build_manifest()
    archive.extract_to_file(
        "kernelcache.release.n90",
        "kernelcache",
        progress=lambda percent: print(f"{percent:.1f}%"),
    )
```

Printing a summary of a build manifest:

```python
import sys
from ipswkit.ipsw import print_info

print_info("firmware.ipsw", sys.stdout)
```

Fetching the latest firmware described by version data:

```python
from ipswkit.firmware import download_latest_fw

path = download_latest_fw(version_data, "iPhone3,1", todir="downloads")
```

Guarding work with a lock file:

```python
from ipswkit.locking import LockFile

with LockFile("download.ipsw.lock"):
    ...
```

Working with a baseband image:

```python
from ipswkit.mbn import MbnFile

with open("image.mbn", "rb") as f:
    mbn = MbnFile.parse(f.read())
mbn.update_sig_blob(new_signature)
signed = bytes(mbn)
```

## What it does not do

ipswkit only reads, describes and downloads firmware files. It does not talk
to devices: it cannot put a device into recovery mode, send firmware
components to it or restore it. `print_info` shows device classes but not
device marketing names. There is no command-line tool; everything is used
from Python.