import re
from typing import Any, Dict, List

from relayer_exporter.errors import ConfigError

WILDCARD = "*"

ORDER_NONE = "none"
ORDER_UNORDERED = "unordered"
ORDER_ORDERED = "ordered"

_ORDERINGS = {
    "": ORDER_NONE,
    "none": ORDER_NONE,
    "order_none_unspecified": ORDER_NONE,
    "unordered": ORDER_UNORDERED,
    "order_unordered": ORDER_UNORDERED,
    "ordered": ORDER_ORDERED,
    "order_ordered": ORDER_ORDERED,
}

_DISCORD_ID_RE = re.compile(r"^\d+$")


def _object(raw, what: str) -> Dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{what} must be a JSON object, got {raw!r}")
    return raw


def _array(raw, what: str) -> List[Any]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError(f"{what} must be a JSON array, got {raw!r}")
    return raw


def _text(raw: Dict[str, Any], key: str, what: str) -> str:
    value = raw.get(key)
    if value is None:
        return ""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ConfigError(f"{what}.{key} must be a string, got {value!r}")
    return str(value)


def normalize_ordering(raw: str) -> str:
    if raw is not None and not isinstance(raw, str):
        raise ConfigError(f"unknown channel ordering: {raw!r}")
    try:
        return _ORDERINGS[(raw or "").strip().lower()]
    except KeyError:
        raise ConfigError(f"unknown channel ordering: {raw!r}") from None


class ChainEnd:
    def __init__(self, chain_name: str, client_id: str, connection_id: str = ""):
        self.chain_name = chain_name
        self.client_id = client_id
        self.connection_id = connection_id

    @classmethod
    def from_registry(cls, raw: Dict[str, Any], side: str) -> "ChainEnd":
        raw = _object(raw, side)
        chain_name = _text(raw, "chain_name", side)
        client_id = _text(raw, "client_id", side)
        if not chain_name or not client_id:
            raise ConfigError(f"{side}: chain_name and client_id are required")
        return cls(chain_name, client_id, _text(raw, "connection_id", side))


class Channel:
    def __init__(
        self,
        src_channel_id: str,
        src_port_id: str,
        dst_channel_id: str,
        dst_port_id: str,
        ordering: str = ORDER_NONE,
        version: str = "",
    ):
        self.src_channel_id = src_channel_id
        self.src_port_id = src_port_id
        self.dst_channel_id = dst_channel_id
        self.dst_port_id = dst_port_id
        self.ordering = ordering
        self.version = version

    @property
    def is_wildcard(self) -> bool:
        # '*' identifiers cannot be turned into a concrete channel query
        return any(
            WILDCARD in i
            for i in (self.src_channel_id, self.src_port_id, self.dst_channel_id, self.dst_port_id)
        )

    @property
    def ordered(self) -> bool:
        return self.ordering == ORDER_ORDERED

    @classmethod
    def from_registry(cls, raw: Dict[str, Any]) -> "Channel":
        raw = _object(raw, "channel")
        c1 = _object(raw.get("chain_1"), "channel.chain_1")
        c2 = _object(raw.get("chain_2"), "channel.chain_2")
        ids = (
            _text(c1, "channel_id", "channel.chain_1"), _text(c1, "port_id", "channel.chain_1"),
            _text(c2, "channel_id", "channel.chain_2"), _text(c2, "port_id", "channel.chain_2"),
        )
        if not all(ids):
            raise ConfigError(f"channel is missing channel_id/port_id: {raw}")
        return cls(*ids, ordering=normalize_ordering(raw.get("ordering", "")), version=_text(raw, "version", "channel"))

    def __repr__(self):
        return (
            f"Channel({self.src_port_id}/{self.src_channel_id} <-> "
            f"{self.dst_port_id}/{self.dst_channel_id}, {self.ordering})"
        )


class Operator:
    def __init__(self, name: str = "", discord_id: str = "", discord_handle: str = "",
                 memo: str = "", chain_1_address: str = "", chain_2_address: str = ""):
        self.name = name
        self.discord_id = discord_id
        self.discord_handle = discord_handle
        self.memo = memo
        self.chain_1_address = chain_1_address
        self.chain_2_address = chain_2_address

    @classmethod
    def from_registry(cls, raw: Dict[str, Any]) -> "Operator":
        raw = _object(raw, "operator")
        discord = _object(raw.get("discord"), "operator.discord")
        return cls(
            name=_text(raw, "name", "operator"),
            discord_id=_text(discord, "id", "operator.discord"),
            discord_handle=_text(discord, "handle", "operator.discord"),
            memo=_text(raw, "memo", "operator"),
            chain_1_address=_text(_object(raw.get("chain_1"), "operator.chain_1"), "address", "operator.chain_1"),
            chain_2_address=_text(_object(raw.get("chain_2"), "operator.chain_2"), "address", "operator.chain_2"),
        )


def discord_ids(operators: List[Operator]) -> str:
    """Comma separated numeric Discord IDs, used to route alerts."""
    return ",".join(op.discord_id for op in operators if _DISCORD_ID_RE.match(op.discord_id))


class Path:
    """An IBC path between two chains as published in the IBC registry."""

    def __init__(self, chain1: ChainEnd, chain2: ChainEnd, channels: List[Channel], operators: List[Operator]):
        self.chain1 = chain1
        self.chain2 = chain2
        self.channels = tuple(channels)
        self.operators = tuple(operators)

    @property
    def name(self) -> str:
        return f"{self.chain1.chain_name}-{self.chain2.chain_name}"

    @property
    def discord_ids(self) -> str:
        return discord_ids(list(self.operators))

    @property
    def chain_names(self):
        return self.chain1.chain_name, self.chain2.chain_name

    @classmethod
    def from_registry(cls, data: Dict[str, Any]) -> "Path":
        if not isinstance(data, dict):
            raise ConfigError("IBC path must be a JSON object")
        return cls(
            chain1=ChainEnd.from_registry(data.get("chain_1"), "chain_1"),
            chain2=ChainEnd.from_registry(data.get("chain_2"), "chain_2"),
            channels=[Channel.from_registry(c) for c in _array(data.get("channels"), "channels")],
            operators=[Operator.from_registry(o) for o in _array(data.get("operators"), "operators")],
        )

    def __repr__(self):
        return f"Path({self.name}, {len(self.channels)} channel(s))"
