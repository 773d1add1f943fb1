from urllib.parse import unquote

import pytest
import requests

from relayer_exporter.chain import ChainSession, open_session, parse_rfc3339, validate_chain_info
from relayer_exporter.context import Context
from relayer_exporter.errors import ChainConnectionError, ChainInitError, ConfigError, TransientRPCError

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


class FakeHTTP:
    """Routes GET requests by URL suffix; records every request."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.requests.append((url, params, headers))
        for suffix, handler in self.routes.items():
            if url.endswith(suffix):
                if callable(handler):
                    return handler(url, params, headers)
                return DummyResponse(handler)
        return DummyResponse({}, status=404)

    def close(self):
        pass


def session(routes, chain_id="test-1", client_id="07-tendermint-0"):
    http = FakeHTTP(routes)
    return ChainSession(chain_id, "http://node:1317/", 3, client_id, http=http), http


def test_open_checks_chain_id():
    s, _ = session({"/node_info": {"default_node_info": {"network": "test-1"}}})
    assert s.open() is s
    assert s.endpoint == "http://node:1317"

    s, _ = session({"/node_info": {"default_node_info": {"network": "other-2"}}})
    with pytest.raises(ChainInitError):
        s.open()


def test_open_classifies_failures():
    def unreachable(url, params, headers):
        raise requests.ConnectionError("refused")

    s, _ = session({"/node_info": unreachable})
    with pytest.raises(ChainConnectionError):
        s.open()

    s, _ = session({"/node_info": lambda *a: DummyResponse({}, status=502)})
    with pytest.raises(ChainInitError):
        s.open()


def test_validate_chain_info():
    validate_chain_info("a-1", "http://a", "07-tendermint-0")
    validate_chain_info("a-1", "http://a", require_client=False)
    with pytest.raises(ConfigError):
        validate_chain_info("", "http://a", "c")
    with pytest.raises(ConfigError):
        validate_chain_info("a-1", "", "c")
    with pytest.raises(ConfigError):
        validate_chain_info("a-1", "http://a", "")


def test_open_session_rejects_missing_client_before_network(monkeypatch):
    def no_network(*args, **kwargs):
        pytest.fail("network used")

    monkeypatch.setattr(requests.Session, "get", no_network)
    with pytest.raises(ConfigError):
        open_session(Context(), rpc("a"), client_id="")


def test_query_errors_are_transient():
    s, _ = session({"/broken": lambda *a: DummyResponse({}, status=500)})
    with pytest.raises(TransientRPCError):
        s.query("/broken")


def test_latest_height_supports_sdk_block():
    s, _ = session({"/blocks/latest": {"sdk_block": {"header": {"height": "4242"}}}})
    assert s.latest_height() == 4242
    s, _ = session({"/blocks/latest": {"block": {"header": {"height": "7"}}}})
    assert s.latest_height() == 7
    s, _ = session({"/blocks/latest": {}})
    with pytest.raises(TransientRPCError):
        s.latest_height()


def test_packet_commitments_paginate_at_height():
    def commitments(url, params, headers):
        if not params:
            return DummyResponse({
                "commitments": [{"sequence": "3"}, {"sequence": "1"}],
                "pagination": {"next_key": "abc"},
            })
        assert params == {"pagination.key": "abc"}
        return DummyResponse({"commitments": [{"sequence": "2"}], "pagination": {"next_key": None}})

    s, http = session({"/packet_commitments": commitments})
    assert s.packet_commitments("transfer", "channel-0", height=77) == [1, 2, 3]
    assert len(http.requests) == 2
    for url, _, headers in http.requests:
        assert url == "http://node:1317/ibc/core/channel/v1/channels/channel-0/ports/transfer/packet_commitments"
        assert headers == {"x-cosmos-block-height": "77"}


def test_unreceived_packets_batches_sequences():
    seen = []

    def unreceived(url, params, headers):
        seg = url.split("/packet_commitments/")[1].split("/")[0]
        seqs = [int(s) for s in unquote(seg).split(",")]
        seen.append(seqs)
        return DummyResponse({"sequences": [str(s) for s in seqs if s % 50 == 0]})

    s, _ = session({"/unreceived_packets": unreceived})
    res = s.unreceived_packets("transfer", "channel-1", range(1, 251), height=9)
    assert [len(b) for b in seen] == [100, 100, 50]
    assert res == [50, 100, 150, 200, 250]


def test_next_sequence_receive():
    s, _ = session({"/next_sequence": {"next_sequence_receive": "12"}})
    assert s.next_sequence_receive("transfer", "channel-1") == 12
    s, _ = session({"/next_sequence": {}})
    with pytest.raises(TransientRPCError):
        s.next_sequence_receive("transfer", "channel-1")


def test_client_state_and_consensus_timestamp():
    s, _ = session({
        "/client_states/07-tendermint-0": {"client_state": {"trusting_period": "10s"}},
        "/consensus_states/07-tendermint-0/revision/1/height/5": {
            "consensus_state": {"timestamp": "2020-01-01T00:00:00.123456789Z"}
        },
    })
    assert s.client_state("07-tendermint-0") == {"trusting_period": "10s"}
    assert s.consensus_timestamp("07-tendermint-0", 1, 5) == 1577836800


def test_block_time():
    s, _ = session({"/blocks/5": {"block": {"header": {"time": "2020-01-01T00:00:10+00:00"}}}})
    assert s.block_time(5) == 1577836810


def test_balances_and_denom_trace():
    s, _ = session({
        "/balances/archway1abc": {"balances": [{"denom": "aarch", "amount": "1000000000000000000000"}]},
        "/denom_traces/ABCDEF": {"denom_trace": {"path": "transfer/channel-0", "base_denom": "uosmo"}},
    })
    assert s.balances("archway1abc") == {"aarch": 10**21}
    assert s.denom_trace("ibc/ABCDEF") == "uosmo"


def test_parse_rfc3339():
    assert parse_rfc3339("2025-08-11T11:02:48.284737546+00:00") == 1754910168
    assert parse_rfc3339("2020-01-01T00:00:00Z") == 1577836800
    with pytest.raises(ValueError):
        parse_rfc3339("yesterday")
