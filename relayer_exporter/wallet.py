import logging
from typing import List, Tuple

from relayer_exporter.chain import ChainSession
from relayer_exporter.config import Account
from relayer_exporter.context import Context
from relayer_exporter.errors import ExporterError
from relayer_exporter.retry import RetryPolicy

logger = logging.getLogger(__name__)


def get_balances(ctx: Context, session: ChainSession, account: Account, retry: RetryPolicy) -> List[Tuple[str, int]]:
    """(denom label, amount) for every configured denom of the account.

    ``ibc/<hash>`` denoms are reported under their base denom when the trace
    can be resolved. Denoms the account does not hold report 0.
    """
    coins = retry.call(ctx, session.balances, account.address)
    balances = []
    for denom in account.denoms:
        label = denom
        if denom.startswith("ibc/"):
            try:
                label = retry.call(ctx, session.denom_trace, denom)
            except ExporterError as e:
                logger.error("Failed to query denom trace for %s on %s: %s", denom, session.chain_id, e)
        balances.append((label, coins.get(denom, 0)))
    return balances
