import tempfile
from types import SimpleNamespace
from unittest import mock

import pytest
import requests

from upack.downloader import Downloader, build_download_url, build_versions_url
from upack.errors import NotFoundError, TransportError
from upack.package import Credentials, PackageIdentifier
from upack.version import UniversalPackageVersion

_real_temporary_file = tempfile.TemporaryFile

SOURCE = "https://feed.example.com/upack/Main/"
VERSION = UniversalPackageVersion.parse("1.2.3-rc.1+b5")


def test_download_url_with_group():
    url = build_download_url(SOURCE, PackageIdentifier.parse("a/b:my pkg"), VERSION)
    assert url == "https://feed.example.com/upack/Main/download/a/b/my%20pkg/1.2.3-rc.1%2Bb5"


def test_download_url_without_group_is_pure():
    pkg = PackageIdentifier.parse("tool")
    v = UniversalPackageVersion.parse("2.0.0")
    first = build_download_url("http://feed/", pkg, v)
    assert first == "http://feed/download/tool/2.0.0"
    assert build_download_url("http://feed/", pkg, v) == first


def test_versions_url():
    assert build_versions_url("http://feed/", PackageIdentifier.parse("tool")) == "http://feed/packages?name=tool"
    assert (
        build_versions_url("http://feed", PackageIdentifier.parse("a/b:tool"))
        == "http://feed/packages?group=a%2Fb&name=tool"
    )


@pytest.fixture
def downloader():
    dl = Downloader(SimpleNamespace(show_progress=False))
    dl.session = mock.MagicMock()
    return dl


def _response(downloader, status=200, chunks=(b"",), payload=None):
    resp = mock.MagicMock()
    resp.status_code = status
    resp.headers = {}
    resp.iter_content.return_value = iter(chunks)
    resp.json.return_value = payload
    downloader.session.get.return_value.__enter__.return_value = resp
    return resp


@pytest.fixture
def tracked_tempfiles():
    created = []

    def factory(*args, **kwargs):
        fh = _real_temporary_file(*args, **kwargs)
        created.append(fh)
        return fh

    with mock.patch("upack.downloader.tempfile.TemporaryFile", side_effect=factory):
        yield created


def test_open_package_returns_rewound_temp_file(downloader, tracked_tempfiles):
    _response(downloader, chunks=[b"PK", b"\x03\x04", b""])
    pkg = PackageIdentifier.parse("g:n")

    with downloader.open_package("http://feed", pkg, VERSION, Credentials("u", "p")) as fh:
        assert fh.read() == b"PK\x03\x04"

    args, kwargs = downloader.session.get.call_args
    assert args[0] == build_download_url("http://feed", pkg, VERSION)
    assert kwargs["auth"] == ("u", "p")
    assert kwargs["stream"] is True
    assert tracked_tempfiles[0].closed


def test_open_package_http_error(downloader, tracked_tempfiles):
    _response(downloader, status=401)
    with pytest.raises(TransportError) as exc:
        downloader.open_package("http://feed", PackageIdentifier.parse("n"), VERSION)
    assert exc.value.status_code == 401
    assert tracked_tempfiles[0].closed


def test_open_package_404_is_transport_error(downloader, tracked_tempfiles):
    _response(downloader, status=404)
    with pytest.raises(TransportError):
        downloader.open_package("http://feed", PackageIdentifier.parse("n"), VERSION)
    assert tracked_tempfiles[0].closed


def test_open_package_failure_mid_stream_removes_temp(downloader, tracked_tempfiles):
    def broken():
        yield b"partial"
        raise requests.exceptions.ChunkedEncodingError("connection reset")

    resp = _response(downloader)
    resp.iter_content.return_value = broken()
    with pytest.raises(TransportError):
        downloader.open_package("http://feed", PackageIdentifier.parse("n"), VERSION)
    assert tracked_tempfiles[0].closed


def test_open_package_connection_error(downloader, tracked_tempfiles):
    downloader.session.get.side_effect = requests.exceptions.ConnectionError("refused")
    with pytest.raises(TransportError):
        downloader.open_package("http://feed", PackageIdentifier.parse("n"), VERSION)
    assert tracked_tempfiles[0].closed


def test_get_json(downloader):
    _response(downloader, payload={"versions": ["1.0.0"]})
    assert downloader.get_json("http://feed/packages?name=n") == {"versions": ["1.0.0"]}
    assert downloader.session.get.call_args.kwargs["auth"] is None


def test_get_json_not_found(downloader):
    _response(downloader, status=404)
    with pytest.raises(NotFoundError):
        downloader.get_json("http://feed/packages?name=n")


@pytest.mark.parametrize("status", [400, 401, 500])
def test_get_json_http_failure(downloader, status):
    _response(downloader, status=status)
    with pytest.raises(TransportError) as exc:
        downloader.get_json("http://feed/packages?name=n")
    assert exc.value.status_code == status


def test_get_json_invalid_body(downloader):
    resp = _response(downloader)
    resp.json.side_effect = requests.exceptions.JSONDecodeError("Expecting value", "<html>", 0)
    with pytest.raises(TransportError):
        downloader.get_json("http://feed/packages?name=n")


def test_session_honours_network_config():
    cfg = SimpleNamespace(verify_ssl=False, proxy_url="http://proxy:3128", retries=5, show_progress=False)
    dl = Downloader(cfg)
    assert dl.session.verify is False
    assert dl.session.proxies["https"] == "http://proxy:3128"
    assert dl.session.get_adapter("https://x").max_retries.total == 5
    dl.close()
