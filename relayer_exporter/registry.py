import base64
import json
import logging
from typing import Dict, List, Optional
from urllib.parse import quote

import requests

from relayer_exporter.config import GitHubConfig, RPCEndpoint
from relayer_exporter.errors import ConfigError
from relayer_exporter.paths import Path

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
IBC_PATH_SUFFIX = ".json"


class IBCRegistry:
    """Loads IBC path definitions from a GitHub hosted registry.

    Every ``*.json`` file in the configured directory (and the optional
    testnets directory) describes one path. Transport or decoding failures
    raise, so a broken registry never looks like an empty one. A single
    malformed path file is logged and skipped.
    """

    def __init__(self, github: Optional[GitHubConfig], timeout: float = 10):
        if github is None:
            raise ConfigError("GitHub configuration is required to load IBC paths")
        self.github = github
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self.github.token:
            headers["Authorization"] = f"Bearer {self.github.token}"
        return headers

    def _contents(self, path: str):
        url = (
            f"{GITHUB_API}/repos/{quote(self.github.org)}/{quote(self.github.repo)}"
            f"/contents/{quote(path.strip('/'))}"
        )
        logger.debug("GET %s", url)
        resp = requests.get(url, headers=self._headers(), timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    @staticmethod
    def _decode(entry) -> dict:
        if not isinstance(entry, dict):
            raise ConfigError(f"unexpected contents entry: {entry!r}")
        content = entry.get("content", "")
        if entry.get("encoding") == "base64":
            content = base64.b64decode(content).decode("utf-8")
        return json.loads(content)

    def _load_dir(self, directory: str) -> List[Path]:
        listing = self._contents(directory)
        if not isinstance(listing, list):
            raise ConfigError(f"{directory} is not a directory in {self.github.org}/{self.github.repo}")
        paths: List[Path] = []
        for item in listing:
            name = item.get("path", "") if isinstance(item, dict) else ""
            if not isinstance(name, str) or not name.endswith(IBC_PATH_SUFFIX):
                continue
            logger.debug("Fetching IBC data for %s/%s/%s", self.github.org, self.github.repo, name)
            entry = self._contents(name)
            try:
                paths.append(Path.from_registry(self._decode(entry)))
            except (ConfigError, ValueError, TypeError) as e:
                # ValueError covers bad base64, UTF-8 and JSON
                logger.error("Dropping malformed IBC path %s: %s", name, e)
        return paths

    def load(self) -> List[Path]:
        logger.info(
            "GitHub IBC registry: %s/%s (dir=%s, testnets_dir=%s)",
            self.github.org, self.github.repo, self.github.ibc_dir, self.github.testnets_ibc_dir or "-",
        )
        paths = self._load_dir(self.github.ibc_dir)
        if self.github.testnets_ibc_dir:
            paths.extend(self._load_dir(self.github.testnets_ibc_dir))
        return paths


def validate_paths(paths: List[Path], rpcs: Dict[str, RPCEndpoint]) -> List[Path]:
    """Keep only paths whose both chains resolve to a configured RPC endpoint."""
    valid = []
    for p in paths:
        missing = [name for name in p.chain_names if name not in rpcs]
        if missing:
            logger.error("Dropping IBC path %s: missing RPC config for chain(s): %s", p.name, ", ".join(missing))
            continue
        valid.append(p)
    return valid
