import logging
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import requests
from prometheus_client import CollectorRegistry, start_http_server

from relayer_exporter.chain import open_session
from relayer_exporter.collector import IBCCollector, WalletBalanceCollector, fan_out
from relayer_exporter.config import Config
from relayer_exporter.context import Context
from relayer_exporter.errors import ConfigError, ExporterError
from relayer_exporter.paths import Path as IBCPath
from relayer_exporter.registry import IBCRegistry, validate_paths
from relayer_exporter.retry import RetryPolicy

logger = logging.getLogger(__name__)

IDLE = "idle"
REFRESHING = "refreshing"
ACTIVE = "active"


def load_registry_paths(cfg: Config) -> List[IBCPath]:
    return IBCRegistry(cfg.github).load()


class ActiveCollectors:
    """The one registry entry serving every scrape.

    Holds the current generation of collectors keyed by kind ("ibc",
    "wallet") together with its scrape timeout. ``swap`` replaces collectors
    by publishing a new generation in a single assignment; a scrape reads the
    generation once and is served entirely by it. All collectors of a scrape
    run side by side under one shared deadline.
    """

    def __init__(self, ctx: Context):
        self.ctx = ctx
        self._lock = threading.Lock()
        self._generation = (None, {})

    def swap(self, collectors: Dict[str, object], scrape_timeout: Optional[float] = None):
        with self._lock:
            generation = dict(self._generation[1])
            generation.update(collectors)
            self._generation = (scrape_timeout, generation)

    def get(self, kind: str):
        return self._generation[1].get(kind)

    def collectors(self):
        return list(self._generation[1].values())

    def describe(self):
        families = []
        for c in self.collectors():
            families.extend(c.describe())
        return families

    def collect(self):
        scrape_timeout, generation = self._generation
        collectors = list(generation.values())
        if not collectors:
            return
        scrape_ctx = self.ctx.child(scrape_timeout)
        # collectors stop at the shared deadline, so the outer wait is unbounded
        results = fan_out(self.ctx, collectors, lambda _, c: c.scrape(scrape_ctx), "scrape")
        for families in results:
            yield from families


class RelayerExporter:
    def __init__(
        self,
        cfg: Config,
        config_path: Optional[Path] = None,
        registry: Optional[CollectorRegistry] = None,
        ctx: Optional[Context] = None,
        path_loader: Callable[[Config], List[IBCPath]] = load_registry_paths,
        session_factory=open_session,
    ):
        self.cfg = cfg
        self.config_path = config_path
        self.ctx = ctx or Context()
        self.registry = registry or CollectorRegistry()
        self.path_loader = path_loader
        self.session_factory = session_factory
        self.collectors = ActiveCollectors(self.ctx)
        self.registry.register(self.collectors)
        self.state = IDLE
        self.server = None

    def _reload_config(self) -> Tuple[Config, bool]:
        """The freshly read config, or the previous one and False on failure."""
        if self.config_path is None:
            return self.cfg, True
        try:
            return Config(self.config_path), True
        except (ConfigError, OSError) as e:
            logger.warning("Failed to reload %s, keeping previous configuration: %s", self.config_path, e)
            return self.cfg, False

    def refresh(self) -> bool:
        """Build a new collector generation; keep the previous one on failure."""
        self.state = REFRESHING
        cfg, ok = self._reload_config()
        rpcs = cfg.rpc_map()
        retry = RetryPolicy(cfg.retry_attempts, cfg.retry_delay)
        updates = {}

        try:
            paths = validate_paths(self.path_loader(cfg), rpcs)
        except (ExporterError, requests.RequestException, ValueError) as e:
            logger.warning("Failed to get IBC paths, skipping IBC collector refresh: %s", e)
            ok = False
        except Exception:
            logger.exception("Unexpected error loading IBC paths, skipping IBC collector refresh")
            ok = False
        else:
            if paths:
                updates["ibc"] = IBCCollector(
                    rpcs, paths, self.ctx, retry, cfg.scrape_timeout, self.session_factory
                )
                logger.info("Loaded %d IBC path(s)", len(paths))
            else:
                logger.warning("No IBC paths found, skipping IBC collector refresh")

        if cfg.accounts:
            updates["wallet"] = WalletBalanceCollector(
                rpcs, cfg.accounts, self.ctx, retry, cfg.scrape_timeout, self.session_factory
            )
        else:
            logger.warning("No accounts configured, skipping wallet balance collector refresh")

        if updates:
            self.collectors.swap(updates, cfg.scrape_timeout)
        self.cfg = cfg
        self.state = ACTIVE if self.collectors.collectors() else IDLE
        return ok

    def run(self):
        self.refresh()
        self.server, _ = start_http_server(self.cfg.port, addr=self.cfg.address, registry=self.registry)
        logger.info("Exporter listening on %s:%s", self.cfg.address, self.cfg.port)
        logger.info("Configuration refresh interval: %ss", self.cfg.refresh_interval)
        try:
            while not self.ctx.wait(self.cfg.refresh_interval):
                logger.info("Refreshing configuration and collectors")
                if self.refresh():
                    logger.info("Successfully refreshed configuration and collectors")
        finally:
            self.server.shutdown()
            self.server.server_close()
            logger.info("Shutdown complete")

    def stop(self):
        logger.info("Stopping exporter")
        self.ctx.cancel()
