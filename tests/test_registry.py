import base64
import json

import pytest
import requests

import relayer_exporter.registry as registry
from relayer_exporter.config import GitHubConfig
from relayer_exporter.errors import ConfigError
from relayer_exporter.registry import IBCRegistry, validate_paths

from fakes import rpc


class DummyResponse:
    def __init__(self, json_data, status=200):
        self._json = json_data
        self.status_code = status

    def raise_for_status(self):
        if self.status_code != 200:
            raise requests.HTTPError(f"status {self.status_code}")

    def json(self):
        return self._json


def encoded(data):
    return {"encoding": "base64", "content": base64.b64encode(json.dumps(data).encode()).decode()}


def path_data(a, b):
    return {
        "chain_1": {"chain_name": a, "client_id": "07-tendermint-0"},
        "chain_2": {"chain_name": b, "client_id": "07-tendermint-1"},
        "channels": [{
            "chain_1": {"channel_id": "channel-0", "port_id": "transfer"},
            "chain_2": {"channel_id": "channel-1", "port_id": "transfer"},
            "ordering": "unordered",
        }],
    }


CONTENTS = {
    "_IBC": [
        {"path": "_IBC/archway-osmosis.json"},
        {"path": "_IBC/README.md"},
        {"path": "_IBC/broken.json"},
    ],
    "_IBC/archway-osmosis.json": encoded(path_data("archway", "osmosis")),
    "_IBC/broken.json": encoded({"chain_1": {}}),
    "testnets/_IBC": [{"path": "testnets/_IBC/constantine-osmotest.json"}],
    "testnets/_IBC/constantine-osmotest.json": encoded(path_data("constantine", "osmotest")),
}


def serve(contents, calls):
    def fake_get(url, headers=None, timeout=None):
        calls.append((url, headers))
        path = url.split("/contents/", 1)[1]
        if path not in contents:
            return DummyResponse({"message": "Not Found"}, status=404)
        return DummyResponse(contents[path])
    return fake_get


@pytest.fixture
def github(monkeypatch):
    calls = []
    monkeypatch.setattr(registry.requests, "get", serve(CONTENTS, calls))
    return calls


def test_load_paths(github):
    cfg = GitHubConfig("archway-network", "networks", "_IBC", "testnets/_IBC", token="tok")
    paths = IBCRegistry(cfg).load()

    assert [p.name for p in paths] == ["archway-osmosis", "constantine-osmotest"]
    urls = [url for url, _ in github]
    assert urls[0] == "https://api.github.com/repos/archway-network/networks/contents/_IBC"
    # README.md is never fetched
    assert not any(u.endswith("README.md") for u in urls)
    assert all(h["Authorization"] == "Bearer tok" for _, h in github)


def test_load_without_token_or_testnets(github):
    paths = IBCRegistry(GitHubConfig("archway-network", "networks", "_IBC")).load()
    assert [p.name for p in paths] == ["archway-osmosis"]
    assert all("Authorization" not in h for _, h in github)


def test_missing_directory_raises(github):
    with pytest.raises(requests.HTTPError):
        IBCRegistry(GitHubConfig("archway-network", "networks", "missing")).load()


def test_file_instead_of_directory(github):
    with pytest.raises(ConfigError):
        IBCRegistry(GitHubConfig("archway-network", "networks", "_IBC/archway-osmosis.json")).load()


def test_github_config_required():
    with pytest.raises(ConfigError):
        IBCRegistry(None)


def test_validate_paths_drops_unknown_chains(github):
    paths = IBCRegistry(GitHubConfig("archway-network", "networks", "_IBC", "testnets/_IBC")).load()
    rpcs = {name: rpc(name) for name in ("archway", "osmosis", "constantine")}
    assert [p.name for p in validate_paths(paths, rpcs)] == ["archway-osmosis"]


MIXED = {
    "_MIXED": [
        {"path": "_MIXED/archway-osmosis.json"},
        {"path": "_MIXED/string-chain.json"},
        {"path": "_MIXED/string-operator.json"},
        {"path": "_MIXED/not-json.json"},
        "stray-entry",
    ],
    "_MIXED/archway-osmosis.json": encoded(path_data("archway", "osmosis")),
    "_MIXED/string-chain.json": encoded(dict(path_data("archway", "juno"), chain_1="archway")),
    "_MIXED/string-operator.json": encoded(dict(path_data("archway", "cosmoshub"), operators=["Relayer Ops"])),
    "_MIXED/not-json.json": {"encoding": "base64", "content": base64.b64encode(b"{not json").decode()},
}


def test_malformed_files_are_dropped(github, monkeypatch):
    monkeypatch.setattr(registry.requests, "get", serve(MIXED, github))
    paths = IBCRegistry(GitHubConfig("archway-network", "networks", "_MIXED")).load()
    assert [p.name for p in paths] == ["archway-osmosis"]
