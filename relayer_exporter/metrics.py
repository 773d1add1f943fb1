from typing import Sequence

from prometheus_client.core import GaugeMetricFamily

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


class Metric:
    """Name, help text and label names of a gauge built fresh on every scrape."""

    def __init__(self, name: str, documentation: str, labels: Sequence[str]):
        self.name = name
        self.documentation = documentation
        self.labels = tuple(labels)

    def family(self) -> GaugeMetricFamily:
        return GaugeMetricFamily(self.name, self.documentation, labels=self.labels)


CLIENT_EXPIRY = Metric(
    'cosmos_ibc_client_expiry',
    'Returns light client expiry in unixtime.',
    ['host_chain_id', 'client_id', 'target_chain_id', 'discord_ids', 'status'],
)

STUCK_PACKETS = Metric(
    'cosmos_ibc_stuck_packets',
    'Returns number of stuck packets for a channel.',
    [
        'src_channel_id',
        'dst_channel_id',
        'src_chain_id',
        'dst_chain_id',
        'src_chain_height',
        'dst_chain_height',
        'src_chain_name',
        'dst_chain_name',
        'discord_ids',
        'status',
    ],
)

WALLET_BALANCE = Metric(
    'cosmos_wallet_balance',
    'Returns wallet balance for an address on a chain.',
    ['account', 'chain_id', 'denom', 'status', 'tags'],
)
