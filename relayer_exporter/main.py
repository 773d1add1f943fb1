import argparse
import logging
import signal
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from relayer_exporter.config import Config
from relayer_exporter.exporter import RelayerExporter


def get_version() -> str:
    try:
        return version("relayer-exporter")
    except PackageNotFoundError:
        return "dev"


def main():
    parser = argparse.ArgumentParser(
        description="IBC relayer Prometheus exporter",
    )
    parser.add_argument(
        '--config', '-c', type=Path,
        default=Path('config.toml'),
        help="Path to TOML configuration file",
    )
    parser.add_argument(
        '--version', action='store_true',
        help="Print version and exit",
    )
    args = parser.parse_args()
    if args.version:
        print(get_version())
        sys.exit(0)

    cfg = Config(args.config)
    level = getattr(logging, cfg.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    exporter = RelayerExporter(cfg, config_path=args.config)

    def _shutdown(signum, frame):
        logging.getLogger(__name__).info("Received signal %d", signum)
        exporter.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    exporter.run()


if __name__ == '__main__':
    main()
