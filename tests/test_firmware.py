import hashlib
import os

import pytest

from ipswkit.firmware import (
    ChecksumMismatchError,
    FirmwareError,
    PurchaseRequiredError,
    download_fw,
    download_latest_fw,
    download_to_buffer,
    download_to_file,
    get_latest_fw,
    get_signed_firmwares,
    sha1_matches,
)

PRODUCT = "iPhone1,1"
GOOD = b"firmware contents"
GOOD_SHA1 = hashlib.sha1(GOOD).digest()


def _versions(device_entry):
    return {
        "MobileDeviceSoftwareVersionsByVersion": {
            "5": {"MobileDeviceSoftwareVersions": {PRODUCT: {}}},
            "9": {"MobileDeviceSoftwareVersions": {PRODUCT: device_entry}},
            "12": {"MobileDeviceSoftwareVersions": {"OtherDevice1,1": {}}},
        }
    }


def _simple_entry(url, sha1_hex=None):
    restore = {"FirmwareURL": url}
    if sha1_hex is not None:
        restore["FirmwareSHA1"] = sha1_hex
    return {
        "Unknown": {"Universal": {"Restore": {"BuildVersion": "B2"}}},
        "B2": {"Restore": restore},
    }


class _Recorder:
    def __init__(self, content):
        self.content = content
        self.calls = []

    def __call__(self, url, path):
        self.calls.append((url, path))
        with open(path, "wb") as f:
            f.write(self.content)


def test_download_to_buffer_reads_file_url(tmp_path):
    src = tmp_path / "data.bin"
    src.write_bytes(GOOD)
    assert download_to_buffer(src.as_uri()) == GOOD


def test_download_to_buffer_missing_raises(tmp_path):
    with pytest.raises(FirmwareError):
        download_to_buffer((tmp_path / "missing").as_uri())


def test_download_to_file_copies(tmp_path):
    src = tmp_path / "data.bin"
    src.write_bytes(GOOD)
    dest = tmp_path / "out.bin"
    download_to_file(src.as_uri(), str(dest))
    assert dest.read_bytes() == GOOD


def test_get_signed_firmwares_filters_signed():
    seen = []

    def fetch(url):
        seen.append(url)
        return (
            '{"identifier":"iPhone10,3","firmwares":['
            '{"version":"14.0","signed":true},'
            '{"version":"13.0","signed":false},'
            '{"version":"12.0"}]}'
        )

    result = get_signed_firmwares("iPhone10,3", fetch)
    assert seen == ["https://api.ipsw.me/v4/device/iPhone10,3"]
    assert result == [{"version": "14.0", "signed": True}]


def test_get_signed_firmwares_accepts_bytes():
    data = b'{"identifier":"iPad1,1","firmwares":[{"signed":true}]}'
    assert get_signed_firmwares("iPad1,1", lambda url: data) == [{"signed": True}]


@pytest.mark.parametrize(
    "payload",
    [
        '{"identifier":"Other1,1","firmwares":[]}',
        '{"firmwares":[]}',
        '{"identifier":"iPad1,1"}',
        '{"identifier":"iPad1,1","firmwares":{}}',
        "[1, 2]",
        '{"identifier":"iPad1,1"',
    ],
)
def test_get_signed_firmwares_bad_data(payload):
    with pytest.raises(FirmwareError):
        get_signed_firmwares("iPad1,1", lambda url: payload)


def test_get_latest_fw_picks_highest_major():
    sha1_hex = "0123456789abcdef0123456789abcdef01234567"
    data = _versions(_simple_entry("http://example.com/fw/a.ipsw", sha1_hex))
    url, sha1 = get_latest_fw(data, PRODUCT)
    assert url == "http://example.com/fw/a.ipsw"
    assert sha1 == bytes.fromhex(sha1_hex)


def test_get_latest_fw_without_sha1_gives_zeros():
    data = _versions(_simple_entry("http://example.com/fw/a.ipsw"))
    url, sha1 = get_latest_fw(data, PRODUCT)
    assert url == "http://example.com/fw/a.ipsw"
    assert sha1 == bytes(20)


def test_get_latest_fw_short_sha1_ignored():
    data = _versions(_simple_entry("http://example.com/fw/a.ipsw", "abcd"))
    assert get_latest_fw(data, PRODUCT)[1] == bytes(20)


def test_get_latest_fw_follows_same_as():
    entry = {
        "Unknown": {"Universal": {"Restore": {"BuildVersion": "B2"}}},
        "B2": {"SameAs": "B3"},
        "B3": {"Restore": {"FirmwareURL": "http://example.com/fw/b3.ipsw"}},
    }
    assert get_latest_fw(_versions(entry), PRODUCT)[0] == "http://example.com/fw/b3.ipsw"


def test_get_latest_fw_follows_update():
    entry = {
        "Unknown": {"Universal": {"Restore": {"BuildVersion": "B2"}}},
        "B2": {
            "Update": {"BuildVersion": "B4"},
            "Restore": {"FirmwareURL": "http://example.com/fw/b2.ipsw"},
        },
        "B4": {"Restore": {"FirmwareURL": "http://example.com/fw/b4.ipsw"}},
    }
    assert get_latest_fw(_versions(entry), PRODUCT)[0] == "http://example.com/fw/b4.ipsw"


def test_get_latest_fw_same_as_missing_raises():
    entry = {
        "Unknown": {"Universal": {"Restore": {"BuildVersion": "B2"}}},
        "B2": {"SameAs": "B9"},
    }
    with pytest.raises(FirmwareError):
        get_latest_fw(_versions(entry), PRODUCT)


@pytest.mark.parametrize(
    "data",
    [
        {},
        {"MobileDeviceSoftwareVersionsByVersion": {}},
        _versions({}),
        _versions({"Unknown": {"Universal": {"Restore": {}}}}),
        _versions({"Unknown": {"Universal": {"Restore": {"BuildVersion": "B2"}}}}),
        _versions(
            {
                "Unknown": {"Universal": {"Restore": {"BuildVersion": "B2"}}},
                "B2": {"Restore": {}},
            }
        ),
    ],
)
def test_get_latest_fw_errors(data):
    with pytest.raises(FirmwareError):
        get_latest_fw(data, PRODUCT)


def test_get_latest_fw_unknown_product():
    data = _versions(_simple_entry("http://example.com/fw/a.ipsw"))
    with pytest.raises(FirmwareError):
        get_latest_fw(data, "Nothing9,9")


def test_sha1_matches(tmp_path):
    path = tmp_path / "f.bin"
    path.write_bytes(GOOD)
    assert sha1_matches(str(path), GOOD_SHA1) is True
    assert sha1_matches(str(path), bytes(20)) is False


def test_download_fw_existing_matching_file_not_downloaded(tmp_path):
    (tmp_path / "a.ipsw").write_bytes(GOOD)
    rec = _Recorder(b"other")
    result = download_fw("http://example.com/fw/a.ipsw", GOOD_SHA1, str(tmp_path), rec)
    assert result == f"{tmp_path}/a.ipsw"
    assert rec.calls == []
    assert (tmp_path / "a.ipsw").read_bytes() == GOOD


def test_download_fw_existing_without_sha1_kept(tmp_path):
    (tmp_path / "a.ipsw").write_bytes(b"anything")
    rec = _Recorder(GOOD)
    result = download_fw("http://example.com/fw/a.ipsw", None, str(tmp_path), rec)
    assert rec.calls == []
    assert open(result, "rb").read() == b"anything"


def test_download_fw_mismatch_redownloads(tmp_path):
    (tmp_path / "a.ipsw").write_bytes(b"stale")
    rec = _Recorder(GOOD)
    result = download_fw("http://example.com/fw/a.ipsw", GOOD_SHA1, str(tmp_path), rec)
    assert rec.calls == [("http://example.com/fw/a.ipsw", f"{tmp_path}/a.ipsw")]
    assert open(result, "rb").read() == GOOD


def test_download_fw_bad_download_removed(tmp_path):
    rec = _Recorder(b"corrupt")
    with pytest.raises(ChecksumMismatchError):
        download_fw("http://example.com/fw/a.ipsw", GOOD_SHA1, str(tmp_path), rec)
    assert not os.path.exists(tmp_path / "a.ipsw")
    assert len(rec.calls) == 1


def test_download_fw_protected(tmp_path):
    rec = _Recorder(GOOD)
    with pytest.raises(PurchaseRequiredError):
        download_fw("protected://example.com/fw/a.ipsw", GOOD_SHA1, str(tmp_path), rec)
    assert rec.calls == []


def test_download_fw_no_filename():
    with pytest.raises(FirmwareError):
        download_fw("no-slash-here", GOOD_SHA1, None, _Recorder(GOOD))


def test_download_latest_fw(tmp_path):
    data = _versions(_simple_entry("http://example.com/fw/latest.ipsw", GOOD_SHA1.hex()))
    rec = _Recorder(GOOD)
    result = download_latest_fw(data, PRODUCT, str(tmp_path), rec)
    assert result == f"{tmp_path}/latest.ipsw"
    assert open(result, "rb").read() == GOOD
    assert rec.calls[0][0] == "http://example.com/fw/latest.ipsw"


def test_download_latest_fw_no_data(tmp_path):
    with pytest.raises(FirmwareError):
        download_latest_fw({}, PRODUCT, str(tmp_path), _Recorder(GOOD))