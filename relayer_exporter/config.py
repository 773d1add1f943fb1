import os
import re
import toml
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from relayer_exporter.errors import ConfigError

DEFAULT_GLOBAL_RPC_TIMEOUT = "5s"

DURATION_RE = re.compile(
    r"^(?:(\d+)h)?(?:(\d+)m(?!s))?(?:(\d+(?:\.\d+)?)s)?(?:(\d+)ms)?$"
)


def parse_duration(dur) -> float:
    """Go-style duration ('1h30m', '5s', '400ms') or plain number -> seconds."""
    if isinstance(dur, bool):
        raise ValueError(f"invalid duration: {dur!r}")
    if isinstance(dur, (int, float)):
        return float(dur)
    if not isinstance(dur, str) or not dur.strip():
        raise ValueError(f"invalid duration: {dur!r}")
    dur = dur.strip()
    m = DURATION_RE.match(dur)
    if not m:
        raise ValueError(f"invalid duration: {dur!r}")
    hours = int(m.group(1) or 0)
    minutes = int(m.group(2) or 0)
    seconds = float(m.group(3) or 0)
    millis = int(m.group(4) or 0)
    return hours * 3600 + minutes * 60 + seconds + millis / 1000


def _duration(value, field: str, positive: bool = False) -> float:
    try:
        seconds = parse_duration(value)
    except ValueError as e:
        raise ConfigError(f"{field}: {e}") from e
    if seconds < 0 or (positive and seconds == 0):
        raise ConfigError(f"{field} must be {'positive' if positive else 'non-negative'}, got {value!r}")
    return seconds


class RPCEndpoint:
    def __init__(self, chain_name: str, chain_id: str, url: str, timeout: float):
        self.chain_name = chain_name
        self.chain_id = chain_id
        self.url = url
        self.timeout = timeout

    def __repr__(self):
        return f"RPCEndpoint({self.chain_name!r}, {self.chain_id!r}, {self.url!r}, timeout={self.timeout})"


class Account:
    def __init__(self, address: str, denoms: List[str], chain_name: str, tags: List[str]):
        self.address = address
        self.denoms = denoms
        self.chain_name = chain_name
        self.tags = tags

    def __repr__(self):
        return f"Account({self.address!r}, chain={self.chain_name!r}, denoms={self.denoms!r})"


class GitHubConfig:
    def __init__(self, org: str, repo: str, ibc_dir: str, testnets_ibc_dir: str = "", token: str = ""):
        self.org = org
        self.repo = repo
        self.ibc_dir = ibc_dir
        self.testnets_ibc_dir = testnets_ibc_dir
        self.token = token


def _validate_url(url: str, chain_name: str):
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ConfigError(f"invalid RPC url {url!r} for chain {chain_name}")
    try:
        parsed.port
    except ValueError as e:
        raise ConfigError(f"invalid port in RPC url {url!r} for chain {chain_name}") from e


def _required(entry: Dict[str, Any], key: str, what: str) -> str:
    value = entry.get(key)
    if not value:
        raise ConfigError(f"missing {key} for {what} config: {entry}")
    if not isinstance(value, str):
        raise ConfigError(f"{key} for {what} config must be a string, got {value!r}")
    return value


def _table(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a table, got {value!r}")
    return value


def _tables(data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise ConfigError(f"[[{key}]] must be an array of tables, got {value!r}")
    return value


def _strings(value, field: str) -> List[str]:
    """A string or a list of strings, as a list."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise ConfigError(f"{field} must be a string or a list of strings, got {value!r}")
    return list(value)


def _typed(value, kind, field: str):
    if not isinstance(value, kind) or isinstance(value, bool):
        raise ConfigError(f"{field} must be {kind.__name__}, got {value!r}")
    return value


class Config:
    def __init__(self, path: Path, environ: Optional[Dict[str, str]] = None):
        environ = os.environ if environ is None else environ
        try:
            data = toml.load(path)
        except (toml.TomlDecodeError, UnicodeDecodeError) as e:
            raise ConfigError(f"cannot parse {path}: {e}") from e

        exporter = _table(data, 'exporter')
        self.address = _typed(exporter.get('address', '0.0.0.0'), str, 'address')
        self.port = _typed(exporter.get('port', 8008), int, 'port')
        if not 0 <= self.port <= 65535:
            raise ConfigError(f"port out of range: {self.port}")
        self.log_level = _typed(exporter.get('log_level', 'INFO'), str, 'log_level')
        self.refresh_interval = _duration(exporter.get('refresh_interval', '5m'), 'refresh_interval', positive=True)
        self.scrape_timeout = _duration(exporter.get('scrape_timeout', '25s'), 'scrape_timeout', positive=True)
        self.retry_attempts = exporter.get('retry_attempts', 5)
        self.retry_delay = _duration(exporter.get('retry_delay', '400ms'), 'retry_delay')
        self.global_rpc_timeout = _duration(
            environ.get('GLOBAL_RPC_TIMEOUT')
            or exporter.get('global_rpc_timeout', DEFAULT_GLOBAL_RPC_TIMEOUT),
            'global_rpc_timeout',
            positive=True,
        )
        if not isinstance(self.retry_attempts, int) or isinstance(self.retry_attempts, bool) \
                or self.retry_attempts < 1:
            raise ConfigError(f"retry_attempts must be a positive integer, got {self.retry_attempts!r}")

        self.rpcs: List[RPCEndpoint] = []
        seen = set()
        for r in _tables(data, 'rpc'):
            chain_name = _required(r, 'chain_name', 'RPC')
            if chain_name in seen:
                raise ConfigError(f"duplicate RPC config for chain: {chain_name}")
            seen.add(chain_name)
            url = _required(r, 'url', 'RPC')
            _validate_url(url, chain_name)
            timeout = r.get('timeout')
            self.rpcs.append(
                RPCEndpoint(
                    chain_name=chain_name,
                    chain_id=_required(r, 'chain_id', 'RPC'),
                    url=url.rstrip('/'),
                    timeout=_duration(timeout, 'timeout', positive=True) if timeout else self.global_rpc_timeout,
                )
            )

        self.accounts: List[Account] = []
        for a in _tables(data, 'accounts'):
            if not a.get('denom'):
                raise ConfigError(f"missing denom for accounts config: {a}")
            account = Account(
                address=_required(a, 'address', 'accounts'),
                denoms=_strings(a['denom'], 'denom'),
                chain_name=_required(a, 'chain_name', 'accounts'),
                tags=_strings(a.get('tags', []), 'tags'),
            )
            if account.chain_name not in seen:
                raise ConfigError(f"missing RPC config for chain: {account.chain_name}")
            self.accounts.append(account)

        self.github: Optional[GitHubConfig] = None
        if 'github' in data:
            gh = _table(data, 'github')
            self.github = GitHubConfig(
                org=_required(gh, 'org', 'github'),
                repo=_required(gh, 'repo', 'github'),
                ibc_dir=_required(gh, 'dir', 'github'),
                testnets_ibc_dir=_typed(gh.get('testnets_dir', ''), str, 'testnets_dir'),
                token=environ.get('GITHUB_TOKEN', ''),
            )

    def rpc_map(self) -> Dict[str, RPCEndpoint]:
        return {r.chain_name: r for r in self.rpcs}
