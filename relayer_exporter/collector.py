import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from relayer_exporter.chain import ChainSession, open_session
from relayer_exporter.config import Account, RPCEndpoint
from relayer_exporter.context import Context
from relayer_exporter.errors import CancellationError, ConfigError, ExporterError
from relayer_exporter.ibc import get_channels_info, get_clients_info
from relayer_exporter.metrics import (
    CLIENT_EXPIRY,
    STATUS_ERROR,
    STATUS_SUCCESS,
    STUCK_PACKETS,
    WALLET_BALANCE,
    Metric,
)
from relayer_exporter.paths import ChainEnd, Path
from relayer_exporter.retry import RetryPolicy
from relayer_exporter.wallet import get_balances

logger = logging.getLogger(__name__)

MAX_WORKERS = 32

# (metric, label values, value)
Sample = Tuple[Metric, List[str], float]


def fan_out(ctx: Context, items: Iterable, task: Callable[[Context, object], list], name: str) -> List[list]:
    """Run ``task(ctx, item)`` for every item in its own worker thread.

    Waits for all tasks or until the context deadline. Each task owns its
    result slot: a task that crashed, was cancelled or did not finish in time
    contributes nothing and never affects the others.
    """
    items = list(items)
    if not items:
        return []
    pool = ThreadPoolExecutor(max_workers=min(len(items), MAX_WORKERS), thread_name_prefix=name)
    try:
        futures = [pool.submit(task, ctx, item) for item in items]
        done, not_done = wait(futures, timeout=ctx.remaining())
        if not_done:
            logger.warning(
                "%s: %d of %d task(s) did not finish before the scrape deadline",
                name, len(not_done), len(futures),
            )
            ctx.cancel()
    finally:
        pool.shutdown(wait=False, cancel_futures=True)

    results = []
    for item, future in zip(items, futures):
        if future not in done:
            continue
        try:
            results.append(future.result())
        except CancellationError as e:
            logger.debug("%s: task for %r cancelled: %s", name, item, e)
        except Exception:
            logger.exception("%s: task for %r failed", name, item)
    return results


def _families(metrics: Sequence[Metric], results: List[List[Sample]]):
    families = {m.name: m.family() for m in metrics}
    for samples in results:
        for metric, labels, value in samples:
            families[metric.name].add_metric(labels, value)
    return list(families.values())


class IBCCollector:
    """Client expiry and stuck packet gauges, one worker per path per scrape."""

    def __init__(
        self,
        rpcs: Dict[str, RPCEndpoint],
        paths: List[Path],
        ctx: Context,
        retry: RetryPolicy,
        scrape_timeout: Optional[float] = None,
        session_factory=open_session,
    ):
        self.rpcs = rpcs
        self.paths = list(paths)
        self.ctx = ctx
        self.retry = retry
        self.scrape_timeout = scrape_timeout
        self.session_factory = session_factory

    def describe(self):
        return [CLIENT_EXPIRY.family(), STUCK_PACKETS.family()]

    def collect(self):
        return self.scrape(self.ctx.child(self.scrape_timeout))

    def scrape(self, ctx: Context):
        """Collect under an externally owned scrape context."""
        logger.debug("Start collecting metrics: %s, %s", CLIENT_EXPIRY.name, STUCK_PACKETS.name)
        results = fan_out(ctx, self.paths, self._collect_path, "ibc-path")
        logger.debug("Stop collecting: %d of %d path(s) reported", len(results), len(self.paths))
        return _families([CLIENT_EXPIRY, STUCK_PACKETS], results)

    def _open(self, ctx: Context, end: ChainEnd) -> Optional[ChainSession]:
        rpc = self.rpcs.get(end.chain_name)
        try:
            if rpc is None:
                raise ConfigError(f"missing RPC config for chain: {end.chain_name}")
            return self.session_factory(ctx, rpc, end.client_id)
        except ExporterError as e:
            logger.error("Cannot open session for %s (client %s): %s", end.chain_name, end.client_id, e)
            return None

    def _chain_id(self, end: ChainEnd) -> str:
        rpc = self.rpcs.get(end.chain_name)
        return rpc.chain_id if rpc else ""

    def _collect_path(self, ctx: Context, path: Path) -> List[Sample]:
        session_a = self._open(ctx, path.chain1)
        session_b = self._open(ctx, path.chain2)
        try:
            clients = get_clients_info(ctx, path, session_a, session_b, self.retry)
            channels = get_channels_info(ctx, path, session_a, session_b, self.retry)
        finally:
            for s in (session_a, session_b):
                if s is not None:
                    s.close()

        chain_a, chain_b = self._chain_id(path.chain1), self._chain_id(path.chain2)
        name_a, name_b = path.chain_names
        discord_ids = path.discord_ids

        samples: List[Sample] = [
            (CLIENT_EXPIRY, [chain_a, path.chain1.client_id, chain_b, discord_ids, clients.status],
             clients.chain_a_expiration),
            (CLIENT_EXPIRY, [chain_b, path.chain2.client_id, chain_a, discord_ids, clients.status],
             clients.chain_b_expiration),
        ]

        height_a, height_b = str(channels.src_height), str(channels.dst_height)
        for res in channels.channels:
            ch = res.channel
            samples.append((
                STUCK_PACKETS,
                [ch.src_channel_id, ch.dst_channel_id, chain_a, chain_b, height_a, height_b,
                 name_a, name_b, discord_ids, res.src_status],
                len(res.unrelayed.src),
            ))
            samples.append((
                STUCK_PACKETS,
                [ch.dst_channel_id, ch.src_channel_id, chain_b, chain_a, height_b, height_a,
                 name_b, name_a, discord_ids, res.dst_status],
                len(res.unrelayed.dst),
            ))
            if res.unrelayed.src or res.unrelayed.dst:
                logger.info(
                    "[%s %s <-> %s] stuck src=%s dst=%s",
                    path.name, ch.src_channel_id, ch.dst_channel_id, res.unrelayed.src, res.unrelayed.dst,
                )
        return samples


class WalletBalanceCollector:
    """Wallet balance gauge, one worker per account per scrape."""

    def __init__(
        self,
        rpcs: Dict[str, RPCEndpoint],
        accounts: List[Account],
        ctx: Context,
        retry: RetryPolicy,
        scrape_timeout: Optional[float] = None,
        session_factory=open_session,
    ):
        self.rpcs = rpcs
        self.accounts = list(accounts)
        self.ctx = ctx
        self.retry = retry
        self.scrape_timeout = scrape_timeout
        self.session_factory = session_factory

    def describe(self):
        return [WALLET_BALANCE.family()]

    def collect(self):
        return self.scrape(self.ctx.child(self.scrape_timeout))

    def scrape(self, ctx: Context):
        logger.debug("Start collecting metric: %s", WALLET_BALANCE.name)
        results = fan_out(ctx, self.accounts, self._collect_account, "wallet")
        logger.debug("Stop collecting: %d of %d account(s) reported", len(results), len(self.accounts))
        return _families([WALLET_BALANCE], results)

    def _collect_account(self, ctx: Context, account: Account) -> List[Sample]:
        rpc = self.rpcs.get(account.chain_name)
        chain_id = rpc.chain_id if rpc else ""
        tags = ",".join(account.tags)
        status = STATUS_SUCCESS
        balances = [(denom, 0) for denom in account.denoms]
        session = None
        try:
            if rpc is None:
                raise ConfigError(f"missing RPC config for chain: {account.chain_name}")
            session = self.session_factory(ctx, rpc, require_client=False)
            balances = get_balances(ctx, session, account, self.retry)
        except ExporterError as e:
            logger.error("Balance of %r: %s", account, e)
            status = STATUS_ERROR
        finally:
            if session is not None:
                session.close()
        return [
            (WALLET_BALANCE, [account.address, chain_id, denom, status, tags], float(amount))
            for denom, amount in balances
        ]
