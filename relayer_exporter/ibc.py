"""Client expiry and stuck packet detection for a single IBC path.

Both operations work on sessions opened once per path per scrape. Every query
goes through the retry policy; an exhausted query degrades the affected value
to its sentinel (0 / empty) with ``status="error"`` instead of failing the
path. ``CancellationError`` is never caught here.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Tuple

from relayer_exporter.chain import ChainSession
from relayer_exporter.config import parse_duration
from relayer_exporter.context import Context
from relayer_exporter.errors import ExporterError, TransientRPCError
from relayer_exporter.metrics import STATUS_ERROR, STATUS_SUCCESS
from relayer_exporter.paths import Channel, Path
from relayer_exporter.retry import RetryPolicy

logger = logging.getLogger(__name__)

DIRECTION_WORKERS = 4


class ClientExpiryResult:
    def __init__(self, chain_a_expiration: int = 0, chain_b_expiration: int = 0, status: str = STATUS_SUCCESS):
        self.chain_a_expiration = chain_a_expiration
        self.chain_b_expiration = chain_b_expiration
        self.status = status

    def __repr__(self):
        return f"ClientExpiryResult({self.chain_a_expiration}, {self.chain_b_expiration}, {self.status})"


class UnrelayedSequences:
    def __init__(self, src: Optional[List[int]] = None, dst: Optional[List[int]] = None):
        self.src = list(src or [])
        self.dst = list(dst or [])

    def __repr__(self):
        return f"UnrelayedSequences(src={self.src}, dst={self.dst})"


class ChannelResult:
    def __init__(self, channel: Channel, unrelayed: UnrelayedSequences,
                 src_status: str = STATUS_SUCCESS, dst_status: str = STATUS_SUCCESS):
        self.channel = channel
        self.unrelayed = unrelayed
        self.src_status = src_status
        self.dst_status = dst_status


class PathReconciliation:
    def __init__(self, channels: List[ChannelResult], src_height: int = 0, dst_height: int = 0,
                 status: str = STATUS_SUCCESS):
        self.channels = channels
        self.src_height = src_height
        self.dst_height = dst_height
        self.status = status


# -------- client expiry --------

def query_client_expiration(host: ChainSession, target: Optional[ChainSession]) -> int:
    """Expiry (unix seconds) of ``host.client_id``, a client on host tracking target.

    Expiry is the tracked chain's block time at the client's latest height
    plus the trusting period. When the tracked block is unavailable the
    host's consensus state at that height is used instead.
    """
    state = host.client_state(host.client_id)
    try:
        trusting_period = int(parse_duration(state.get("trusting_period", "")))
    except ValueError as e:
        raise TransientRPCError(f"{host.chain_id}: client {host.client_id}: {e}") from e
    latest = state.get("latest_height") or {}
    try:
        revision_number = int(latest.get("revision_number") or 0)
        revision_height = int(latest.get("revision_height") or 0)
    except (AttributeError, TypeError, ValueError) as e:
        raise TransientRPCError(f"{host.chain_id}: client {host.client_id}: bad latest_height {latest!r}") from e
    if not trusting_period or not revision_height:
        raise TransientRPCError(f"{host.chain_id}: client {host.client_id} has no trusting period or height")

    tracked = state.get("chain_id")
    if target is not None and tracked and tracked != target.chain_id:
        logger.warning(
            "Client %s on %s tracks %s, path expects %s",
            host.client_id, host.chain_id, tracked, target.chain_id,
        )

    timestamp = None
    if target is not None:
        try:
            timestamp = target.block_time(revision_height)
        except TransientRPCError as e:
            logger.debug("block %d unavailable on %s (%s), using consensus state", revision_height, target.chain_id, e)
    if timestamp is None:
        timestamp = host.consensus_timestamp(host.client_id, revision_number, revision_height)
    return timestamp + trusting_period


def get_clients_info(ctx: Context, path: Path, session_a: Optional[ChainSession],
                     session_b: Optional[ChainSession], retry: RetryPolicy) -> ClientExpiryResult:
    status = STATUS_SUCCESS if session_a is not None and session_b is not None else STATUS_ERROR
    expirations = []
    for host, target, end in ((session_a, session_b, path.chain1), (session_b, session_a, path.chain2)):
        if host is None:
            expirations.append(0)
            continue
        try:
            expirations.append(retry.call(ctx, query_client_expiration, host, target))
        except ExporterError as e:
            logger.error("Client expiry of %s on %s (path %s): %s", end.client_id, host.chain_id, path.name, e)
            expirations.append(0)
            status = STATUS_ERROR
    return ClientExpiryResult(expirations[0], expirations[1], status)


# -------- stuck packets --------

def filter_ordered(candidates: List[int], next_sequence: int) -> List[int]:
    """An ordered channel is only blocked on the receiver's next expected sequence."""
    return [next_sequence] if next_sequence in candidates else []


def unrelayed_sequences(
    ctx: Context,
    retry: RetryPolicy,
    sender: ChainSession,
    sender_port: str,
    sender_channel: str,
    sender_height: int,
    receiver: ChainSession,
    receiver_port: str,
    receiver_channel: str,
    receiver_height: int,
    ordered: bool,
) -> Tuple[List[int], str]:
    """Packets committed on sender but not received on receiver, one direction."""
    where = f"{sender.chain_id} {sender_port}/{sender_channel} -> {receiver.chain_id}"
    try:
        committed = retry.call(ctx, sender.packet_commitments, sender_port, sender_channel, sender_height)
    except ExporterError as e:
        logger.warning("[%s] packet commitments unavailable: %s", where, e)
        return [], STATUS_ERROR
    if not committed:
        return [], STATUS_SUCCESS

    try:
        candidates = retry.call(
            ctx, receiver.unreceived_packets, receiver_port, receiver_channel, committed, receiver_height
        )
    except ExporterError as e:
        logger.warning("[%s] unreceived packets unavailable: %s", where, e)
        return [], STATUS_ERROR
    if not ordered or not candidates:
        return candidates, STATUS_SUCCESS

    try:
        next_sequence = retry.call(ctx, receiver.next_sequence_receive, receiver_port, receiver_channel)
    except ExporterError as e:
        logger.warning("[%s] next sequence to receive unavailable: %s", where, e)
        return [], STATUS_ERROR
    return filter_ordered(candidates, next_sequence), STATUS_SUCCESS


def _failed(channels: List[Channel]) -> PathReconciliation:
    return PathReconciliation(
        [ChannelResult(ch, UnrelayedSequences(), STATUS_ERROR, STATUS_ERROR) for ch in channels],
        status=STATUS_ERROR,
    )


def get_channels_info(ctx: Context, path: Path, session_a: Optional[ChainSession],
                      session_b: Optional[ChainSession], retry: RetryPolicy) -> PathReconciliation:
    channels = [c for c in path.channels if not c.is_wildcard]
    if session_a is None or session_b is None:
        return _failed(channels)

    with ThreadPoolExecutor(max_workers=DIRECTION_WORKERS, thread_name_prefix=f"path-{path.name}") as pool:
        # Heights are read once and pin every commitment query of this path.
        fa = pool.submit(retry.call, ctx, session_a.latest_height)
        fb = pool.submit(retry.call, ctx, session_b.latest_height)
        try:
            height_a, height_b = fa.result(), fb.result()
        except ExporterError as e:
            logger.error("Latest heights for path %s: %s", path.name, e)
            return _failed(channels)

        pending = []
        for ch in channels:
            src = pool.submit(
                unrelayed_sequences, ctx, retry,
                session_a, ch.src_port_id, ch.src_channel_id, height_a,
                session_b, ch.dst_port_id, ch.dst_channel_id, height_b,
                ch.ordered,
            )
            dst = pool.submit(
                unrelayed_sequences, ctx, retry,
                session_b, ch.dst_port_id, ch.dst_channel_id, height_b,
                session_a, ch.src_port_id, ch.src_channel_id, height_a,
                ch.ordered,
            )
            pending.append((ch, src, dst))

        results = []
        for ch, src, dst in pending:
            src_seqs, src_status = src.result()
            dst_seqs, dst_status = dst.result()
            results.append(ChannelResult(ch, UnrelayedSequences(src_seqs, dst_seqs), src_status, dst_status))

    return PathReconciliation(results, height_a, height_b)
