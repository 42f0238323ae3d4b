from __future__ import annotations

import atexit
import tempfile
from typing import IO, Any, Optional
from urllib.parse import quote, urlencode

import requests
import urllib3
from requests.adapters import HTTPAdapter, Retry
from tqdm import tqdm

from .config import Config
from .errors import NotFoundError, TransportError
from .logger import setup_logger
from .package import Credentials, PackageIdentifier
from .version import UniversalPackageVersion

_logger = setup_logger()

CHUNK_SIZE = 65536


# --------------------------------------------------------
# URL Builders
# --------------------------------------------------------


def build_download_url(source_url: str, identifier: PackageIdentifier, version: UniversalPackageVersion) -> str:
    """{source}/download/[{group}/]{name}/{version}"""
    parts = [source_url.rstrip("/"), "download"]
    if identifier.group:
        parts.append(quote(identifier.group, safe="/"))
    parts.append(quote(identifier.name, safe=""))
    parts.append(quote(str(version), safe=""))
    return "/".join(parts)


def build_versions_url(source_url: str, identifier: PackageIdentifier) -> str:
    params = {}
    if identifier.group:
        params["group"] = identifier.group
    params["name"] = identifier.name
    return f"{source_url.rstrip('/')}/packages?{urlencode(params)}"


class Downloader:
    """
    HTTP access to a universal package feed: version listing and artifact download.
    """

    def __init__(self, config: Config) -> None:
        self.config = config

        # Network Configuration
        self.proxy_url = getattr(self.config, "proxy_url", None)
        self.verify_ssl = getattr(self.config, "verify_ssl", True)
        self.ca_bundle = getattr(self.config, "ca_bundle", None)
        self.retries = getattr(self.config, "retries", 3)
        self.show_progress = getattr(self.config, "show_progress", True)

        # Timeouts (Connect, Read)
        self.timeout = (
            getattr(self.config, "timeout_connect", 10),
            getattr(self.config, "timeout_read", 60),
        )

        self.session: Optional[requests.Session] = None
        self._init_session()
        atexit.register(self.close)

    def _init_session(self) -> None:
        self.session = requests.Session()

        # Ignore proxy/CA env vars; the config is authoritative.
        self.session.trust_env = False

        if self.proxy_url:
            self.session.proxies.update({
                "http": self.proxy_url,
                "https": self.proxy_url,
            })

        # Transport-level retries live here and nowhere else.
        retry_strategy = Retry(
            total=self.retries,
            backoff_factor=0.3,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["HEAD", "GET", "OPTIONS"],
        )
        adapter = HTTPAdapter(pool_connections=10, pool_maxsize=10, max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        if not self.verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            self.session.verify = False
            _logger.warning("SSL verification disabled (Insecure).")
        else:
            self.session.verify = self.ca_bundle if self.ca_bundle else True

    def close(self) -> None:
        if self.session:
            self.session.close()

    # --------------------------------------------------------
    # Feed Calls
    # --------------------------------------------------------

    def get_json(self, url: str, credentials: Optional[Credentials] = None) -> Any:
        """GET a JSON document. 404 -> NotFoundError, other failures -> TransportError."""
        _logger.debug("GET %s", url)
        try:
            with self.session.get(url, auth=_auth(credentials), timeout=self.timeout) as resp:
                if resp.status_code == 404:
                    raise NotFoundError(f"Not found on feed: {url}")
                _raise_for_status(resp, url)
                return resp.json()
        except requests.exceptions.JSONDecodeError as e:
            raise TransportError(f"Invalid JSON from {url}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

    def open_package(
        self,
        source_url: str,
        identifier: PackageIdentifier,
        version: UniversalPackageVersion,
        credentials: Optional[Credentials] = None,
    ) -> IO[bytes]:
        """
        Download a package archive into an anonymous temporary file and return it
        rewound. The file is deleted when closed; it is closed before any error propagates.
        """
        url = build_download_url(source_url, identifier, version)
        _logger.info("Downloading %s %s from %s", identifier, version, source_url)

        tmp = tempfile.TemporaryFile(prefix="upack_dl_")
        try:
            with self.session.get(url, auth=_auth(credentials), stream=True, timeout=self.timeout) as resp:
                _raise_for_status(resp, url)
                self._copy_response(resp, tmp, desc=f"{identifier.name} {version}")
            tmp.seek(0)
            return tmp
        except requests.exceptions.RequestException as e:
            tmp.close()
            raise TransportError(f"Download of {url} failed: {e}") from e
        except BaseException:
            tmp.close()
            raise

    def _copy_response(self, resp: requests.Response, fh: IO[bytes], desc: str) -> int:
        total = int(resp.headers.get("content-length", 0) or 0)
        written = 0
        with tqdm(total=total or None, unit="B", unit_scale=True, desc=desc, disable=not self.show_progress) as bar:
            for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                if chunk:
                    fh.write(chunk)
                    written += len(chunk)
                    bar.update(len(chunk))
        _logger.debug("Downloaded %d bytes (%s)", written, desc)
        return written


def _auth(credentials: Optional[Credentials]):
    return credentials.as_auth() if credentials else None


def _raise_for_status(resp: requests.Response, url: str) -> None:
    if not 200 <= resp.status_code < 300:
        raise TransportError(f"HTTP {resp.status_code} for {url}", status_code=resp.status_code)
