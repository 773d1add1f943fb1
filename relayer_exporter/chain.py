import datetime
import logging
import re
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote_plus

import requests

from relayer_exporter.config import RPCEndpoint
from relayer_exporter.context import Context
from relayer_exporter.errors import (
    ChainConnectionError,
    ChainInitError,
    ConfigError,
    TransientRPCError,
)

logger = logging.getLogger(__name__)

HEIGHT_HEADER = "x-cosmos-block-height"
BATCH = 100  # sequences per unreceived_packets request

# RFC3339 (with arbitrary fractional seconds) -> epoch seconds
_TS_TZ_RE = re.compile(r"^(?P<prefix>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?P<frac>\.\d+)?(?P<tz>Z|[+\-]\d{2}:\d{2})$")


def parse_rfc3339(ts: str) -> int:
    """
    Parse timestamps like '2025-08-11T11:02:48.284737546+00:00' or with 'Z'.
    Fractional seconds are cut to microseconds since datetime.fromisoformat
    only supports up to 6 digits.
    """
    m = _TS_TZ_RE.match((ts or "").replace("z", "Z"))
    if not m:
        raise ValueError(f"not an RFC3339 timestamp: {ts!r}")
    tz = m.group("tz")
    if tz == "Z":
        tz = "+00:00"
    frac = m.group("frac") or ""
    if frac:
        frac = "." + frac[1:7].ljust(6, "0")
    return int(datetime.datetime.fromisoformat(f"{m.group('prefix')}{frac}{tz}").timestamp())


def _chunked(seqs):
    seqs = list(seqs)
    for i in range(0, len(seqs), BATCH):
        yield seqs[i:i+BATCH]


def validate_chain_info(chain_id: str, url: str, client_id: str = "", require_client: bool = True):
    if not chain_id:
        raise ConfigError(f"missing chain ID for {url or '<no url>'}")
    if not url:
        raise ConfigError(f"missing RPC address for {chain_id}")
    if require_client and not client_id:
        raise ConfigError(f"missing client ID for {chain_id}")


class ChainSession:
    """Handle to one chain's gRPC-gateway REST API for the duration of a scrape.

    Queries never retry; every transport, HTTP or decoding failure is raised
    as ``TransientRPCError`` and retried by the caller.
    """

    def __init__(self, chain_id: str, endpoint: str, timeout: float, client_id: str = "", http=None):
        self.chain_id = chain_id
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.client_id = client_id
        self.http = http if http is not None else requests.Session()

    def __repr__(self):
        return f"ChainSession({self.chain_id!r}, {self.endpoint!r}, client_id={self.client_id!r})"

    def open(self) -> "ChainSession":
        """Check that the endpoint is reachable and serves the expected chain."""
        url = f"{self.endpoint}/cosmos/base/tendermint/v1beta1/node_info"
        try:
            resp = self.http.get(url, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ChainConnectionError(f"{self.chain_id}: cannot reach {self.endpoint}: {e}") from e
        try:
            resp.raise_for_status()
            network = (resp.json().get("default_node_info") or {}).get("network", "")
        except (requests.RequestException, ValueError) as e:
            raise ChainInitError(f"{self.chain_id}: bad node_info from {self.endpoint}: {e}") from e
        if network != self.chain_id:
            raise ChainInitError(
                f"chain ID mismatch on {self.endpoint}: got {network!r}, expected {self.chain_id!r}"
            )
        return self

    def close(self):
        self.http.close()

    def query(self, path: str, params: Optional[dict] = None, height: Optional[int] = None) -> dict:
        url = f"{self.endpoint}{path}"
        headers = {HEIGHT_HEADER: str(height)} if height else None
        logger.debug("GET %s params=%s height=%s", url, params, height)
        try:
            r = self.http.get(url, params=params or {}, headers=headers, timeout=self.timeout)
            r.raise_for_status()
            return r.json()
        except (requests.RequestException, ValueError) as e:
            raise TransientRPCError(f"{self.chain_id}: GET {url} failed: {e}") from e

    def _query_all(self, path: str, list_key: str, height: Optional[int] = None) -> list:
        """Follow pagination.next_key for list endpoints."""
        items: List = []
        next_key = None
        while True:
            params = {"pagination.key": next_key} if next_key else None
            res = self.query(path, params=params, height=height)
            items.extend(res.get(list_key, []) or [])
            next_key = (res.get("pagination") or {}).get("next_key")
            if not next_key:
                break
        return items

    # ---- heights and client state ----

    def latest_height(self) -> int:
        res = self.query("/cosmos/base/tendermint/v1beta1/blocks/latest")
        block = res.get("sdk_block") or res.get("block") or {}
        try:
            return int(block["header"]["height"])
        except (KeyError, TypeError, ValueError) as e:
            raise TransientRPCError(f"{self.chain_id}: no height in latest block response") from e

    def block_time(self, height: int) -> int:
        res = self.query(f"/cosmos/base/tendermint/v1beta1/blocks/{height}")
        block = res.get("sdk_block") or res.get("block") or {}
        try:
            return parse_rfc3339((block.get("header") or {}).get("time", ""))
        except ValueError as e:
            raise TransientRPCError(f"{self.chain_id}: block {height}: {e}") from e

    def client_state(self, client_id: str) -> dict:
        res = self.query(f"/ibc/core/client/v1/client_states/{quote_plus(client_id)}")
        state = res.get("client_state")
        if not state:
            raise TransientRPCError(f"{self.chain_id}: empty client state for {client_id}")
        return state

    def consensus_timestamp(self, client_id: str, revision_number: int, revision_height: int) -> int:
        res = self.query(
            f"/ibc/core/client/v1/consensus_states/{quote_plus(client_id)}"
            f"/revision/{revision_number}/height/{revision_height}"
        )
        ts = (res.get("consensus_state") or {}).get("timestamp", "")
        try:
            return parse_rfc3339(ts)
        except ValueError as e:
            raise TransientRPCError(f"{self.chain_id}: consensus state of {client_id}: {e}") from e

    # ---- packets ----

    def _channel_path(self, port: str, channel: str) -> str:
        return f"/ibc/core/channel/v1/channels/{quote_plus(channel)}/ports/{quote_plus(port)}"

    def packet_commitments(self, port: str, channel: str, height: Optional[int] = None) -> List[int]:
        items = self._query_all(f"{self._channel_path(port, channel)}/packet_commitments", "commitments", height)
        try:
            return sorted(int(c["sequence"]) for c in items)
        except (KeyError, TypeError, ValueError) as e:
            raise TransientRPCError(f"{self.chain_id}: malformed commitments for {port}/{channel}: {e}") from e

    def unreceived_packets(self, port: str, channel: str, seqs: Iterable[int], height: Optional[int] = None) -> List[int]:
        unreceived = set()
        base = f"{self._channel_path(port, channel)}/packet_commitments/{{seqs}}/unreceived_packets"
        for batch in _chunked(seqs):
            seqs_seg = ",".join(str(s) for s in batch)
            res = self.query(base.format(seqs=quote_plus(seqs_seg)), height=height)
            for s in res.get("sequences", []) or []:
                try:
                    unreceived.add(int(s))
                except (TypeError, ValueError) as e:
                    raise TransientRPCError(f"{self.chain_id}: bad sequence {s!r} for {port}/{channel}") from e
        return sorted(unreceived)

    def next_sequence_receive(self, port: str, channel: str) -> int:
        res = self.query(f"{self._channel_path(port, channel)}/next_sequence")
        try:
            return int(res["next_sequence_receive"])
        except (KeyError, TypeError, ValueError) as e:
            raise TransientRPCError(f"{self.chain_id}: no next_sequence_receive for {port}/{channel}") from e

    # ---- bank ----

    def balances(self, address: str) -> Dict[str, int]:
        items = self._query_all(f"/cosmos/bank/v1beta1/balances/{quote_plus(address)}", "balances")
        try:
            return {c["denom"]: int(c["amount"]) for c in items}
        except (KeyError, TypeError, ValueError) as e:
            raise TransientRPCError(f"{self.chain_id}: malformed balances for {address}: {e}") from e

    def denom_trace(self, denom: str) -> str:
        """Base denom behind an ``ibc/<hash>`` denom."""
        digest = denom.split("/", 1)[1] if denom.startswith("ibc/") else denom
        res = self.query(f"/ibc/apps/transfer/v1/denom_traces/{quote_plus(digest)}")
        base = (res.get("denom_trace") or {}).get("base_denom")
        if not base:
            raise TransientRPCError(f"{self.chain_id}: no denom trace for {denom}")
        return base


def open_session(ctx: Context, rpc: RPCEndpoint, client_id: str = "", require_client: bool = True) -> ChainSession:
    """Validate identifiers and open a session; no retries here."""
    validate_chain_info(rpc.chain_id, rpc.url, client_id, require_client)
    ctx.check(f"opening session to {rpc.chain_id}")
    session = ChainSession(rpc.chain_id, rpc.url, rpc.timeout, client_id)
    try:
        return session.open()
    except Exception:
        session.close()
        raise
