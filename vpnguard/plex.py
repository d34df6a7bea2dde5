#!/usr/bin/env python3

"""
Plex control API client and public address probe.

Features:
- requests sessions with urllib3 retry/backoff on transient HTTP errors
- a transport adapter that binds outgoing connections to a chosen local
  address, so the probe leaves through the physical interface and not the tunnel
- Plex token discovery from the operator's media pipeline config or
  Plex's own Preferences.xml
"""

import ipaddress
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional

import requests
import yaml
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .logger import log_message
from .utils import VpnGuardError


class ProbeError(VpnGuardError):
    """The public address could not be determined."""
    pass


class PlexApiError(VpnGuardError):
    """Plex's local API rejected or failed a request."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SourceAddressAdapter(HTTPAdapter):
    """HTTPAdapter whose connection pool binds sockets to ``source_address``."""

    def __init__(self, source_address: str, **kwargs):
        self.source_address = (source_address, 0)
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        pool_kwargs['source_address'] = self.source_address
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)


def _retry_strategy(total, backoff_factor):
    return Retry(
        total=total,
        backoff_factor=backoff_factor,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=["HEAD", "GET", "PUT"],
        raise_on_status=False
    )


class PublicAddressProbe:
    """Asks an address-echo service for our public address over a bound connection."""

    MAX_RETRIES = 1
    BACKOFF_FACTOR = 0.5

    def __init__(self, url: str = "http://checkip.amazonaws.com", timeout: int = 10):
        self.url = url
        self.timeout = timeout

    def _session(self, bind_address: str) -> requests.Session:
        session = requests.Session()
        adapter = SourceAddressAdapter(
            bind_address, max_retries=_retry_strategy(self.MAX_RETRIES, self.BACKOFF_FACTOR)
        )
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def probe(self, bind_address: str) -> str:
        """Return the validated public address seen from ``bind_address``."""
        session = self._session(bind_address)
        try:
            response = session.get(self.url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise ProbeError(f"Public IP check via {bind_address} failed: {e}")
        finally:
            session.close()

        text = response.text.strip()
        try:
            return str(ipaddress.ip_address(text))
        except ValueError:
            raise ProbeError(f"Address echo service returned garbage: {text[:60]!r}")


class PlexTokenLocator:
    """Finds the Plex token in the operator's home directory."""

    def __init__(self, operator_home: Path):
        self.operator_home = Path(operator_home)

    @property
    def pipeline_config(self) -> Path:
        return self.operator_home / ".config" / "transmission-done" / "config.yml"

    @property
    def plex_preferences(self) -> Path:
        return self.operator_home / "Library" / "Application Support" / "Plex Media Server" / "Preferences.xml"

    def _from_pipeline_config(self) -> Optional[str]:
        """``plex.token`` from the media pipeline's YAML config."""
        try:
            with open(self.pipeline_config, 'r') as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            return None
        except (OSError, yaml.YAMLError) as e:
            log_message(1, f"Cannot read {self.pipeline_config}: {e}")
            return None
        plex = data.get("plex") if isinstance(data, dict) else None
        token = plex.get("token") if isinstance(plex, dict) else None
        if not token:
            return None
        return str(token).strip() or None

    def _from_preferences(self) -> Optional[str]:
        try:
            root = ET.parse(self.plex_preferences).getroot()
        except (OSError, ET.ParseError):
            return None
        return root.attrib.get("PlexOnlineToken") or None

    def find(self) -> Optional[str]:
        token = self._from_pipeline_config() or self._from_preferences()
        if not token:
            log_message(1, f"WARNING: Plex token not found in {self.pipeline_config} or Preferences.xml")
        return token


class PlexClient:
    """
    Client for the Plex Media Server local HTTP API.

    Reads and writes the ``customConnections`` preference, which is the
    address Plex advertises for remote access.
    """

    PREFS_PATH = "/:/prefs"
    SETTING_ID = "customConnections"
    MAX_RETRIES = 2
    BACKOFF_FACTOR = 1.0

    def __init__(self, base_url: str = "http://localhost:32400", token_provider=None,
                 timeout: int = 10, session: Optional[requests.Session] = None):
        """
        Args:
            base_url: Plex server URL
            token_provider: object with ``find()`` returning the token (looked up per request)
            timeout: per-request timeout in seconds
            session: preconfigured session (tests)
        """
        self.base_url = base_url
        self.token_provider = token_provider
        self.timeout = timeout
        self.session = session or self._build_session()

    def _build_session(self) -> requests.Session:
        session = requests.Session()
        adapter = HTTPAdapter(max_retries=_retry_strategy(self.MAX_RETRIES, self.BACKOFF_FACTOR))
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update({"Accept": "application/json"})
        return session

    def _token(self) -> str:
        token = self.token_provider.find() if self.token_provider else None
        if not token:
            raise PlexApiError("Cannot talk to Plex: no token available")
        return token

    def _request(self, method: str, params=None) -> requests.Response:
        url = self.base_url.rstrip("/") + self.PREFS_PATH
        headers = {"X-Plex-Token": self._token()}
        log_message(5, f"Making {method} request to: {url}")
        try:
            response = self.session.request(method, url, params=params, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise PlexApiError(f"Request error for {url}: {e}")
        log_message(5, f"Response status: {response.status_code}")
        if response.status_code != 200:
            raise PlexApiError(f"Plex API returned HTTP {response.status_code}", status_code=response.status_code)
        return response

    @staticmethod
    def connection_url(public_address: str, port: int = 32400) -> str:
        host = f"[{public_address}]" if ":" in public_address else public_address
        return f"https://{host}:{port}"

    def get_custom_connections(self) -> Optional[str]:
        response = self._request("GET")
        try:
            settings = response.json()["MediaContainer"]["Setting"]
        except (ValueError, KeyError, TypeError) as e:
            raise PlexApiError(f"Unexpected prefs payload: {e}")
        for setting in settings:
            if setting.get("id") == self.SETTING_ID:
                return setting.get("value") or None
        return None

    def set_custom_connections(self, url: str):
        log_message(3, f"Updating Plex customConnections to {url}")
        self._request("PUT", params={self.SETTING_ID: url})
        log_message(2, "Plex customConnections updated successfully")
