"""Main entry point for the push-proxy metrics relay."""
import argparse
import logging
import os
import signal
import sys

from push_proxy.config import (
    DEFAULT_PUSHGATEWAY_ADDR,
    DEFAULT_TARGET_ADDR,
    load_config,
    parse_labels,
)
from push_proxy.errors import ConfigError
from push_proxy.relay import RelayLoop
from push_proxy.self_metrics import SelfMetrics


def setup_logging(log_level: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    # basicConfig is a no-op once handlers exist; the level still applies
    logging.getLogger().setLevel(level)

    # Reduce noise from some libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "t", "yes", "y", "on"):
        return True
    if lowered in ("0", "false", "f", "no", "n", "off"):
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value: {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="push-proxy",
        description="Scrape a metrics endpoint on an interval and forward it to a Pushgateway"
    )
    parser.add_argument("--config", "-c", help="Optional YAML configuration file")
    parser.add_argument(
        "--target-addr", "-t",
        help=f"The address of the target to scrape metrics from (default {DEFAULT_TARGET_ADDR})"
    )
    parser.add_argument(
        "--pushgateway-addr",
        help=f"The address of the Pushgateway to push metrics to (default {DEFAULT_PUSHGATEWAY_ADDR})"
    )
    parser.add_argument("--pushgateway-user", help="Username for Pushgateway basic auth")
    parser.add_argument("--pushgateway-pass", help="Password for Pushgateway basic auth")
    parser.add_argument(
        "--label-job", "--job-name", "-j", dest="job",
        help="The job name to use when pushing metrics (required)"
    )
    parser.add_argument(
        "--label-instance", "-n", dest="instance",
        help="The instance label (default: POD_NAME, POD_IP, or the host's primary IP)"
    )
    parser.add_argument("--label-namespace", dest="namespace", help="Optional namespace label")
    parser.add_argument(
        "--namespace-placement", choices=["suffix", "prefix"],
        help="Put the namespace segment after the extra labels (suffix) or right after instance (prefix)"
    )
    parser.add_argument(
        "--labels", action="append", metavar="KEY=VALUE[,KEY=VALUE]",
        help="Additional labels for the push URL; may be repeated"
    )
    parser.add_argument("--interval", "-i", help="Push interval, e.g. 15s or 1m (default 15s)")
    parser.add_argument(
        "--request-timeout",
        help="Deadline for each scrape and push request (default and maximum: the interval)"
    )
    parser.add_argument("--cleanup-timeout", help="Deadline for the shutdown cleanup request (default 5s)")
    parser.add_argument(
        "--auto-cleanup", nargs="?", const=True, type=parse_bool, dest="auto_cleanup",
        help="Delete this instance's metrics from the Pushgateway on shutdown (default true)"
    )
    parser.add_argument(
        "--no-auto-cleanup", action="store_false", dest="auto_cleanup",
        help="Keep metrics on the Pushgateway after shutdown"
    )
    parser.add_argument("--metrics-port", type=int, help="Serve self-metrics on this port (0 disables)")
    parser.add_argument("--log-level", help="Logging level (default INFO)")
    parser.set_defaults(auto_cleanup=None)
    return parser


def config_overrides(args: argparse.Namespace) -> dict:
    """Map parsed CLI flags onto configuration fields."""
    labels = parse_labels(args.labels) if args.labels else None
    return {
        "target_addr": args.target_addr,
        "pushgateway_addr": args.pushgateway_addr,
        "pushgateway_user": args.pushgateway_user,
        "pushgateway_pass": args.pushgateway_pass,
        "job": args.job,
        "instance": args.instance,
        "namespace": args.namespace,
        "namespace_placement": args.namespace_placement,
        "labels": labels,
        "interval_s": args.interval,
        "request_timeout_s": args.request_timeout,
        "cleanup_timeout_s": args.cleanup_timeout,
        "auto_cleanup": args.auto_cleanup,
        "metrics_port": args.metrics_port,
        "log_level": args.log_level,
    }


def main(argv=None) -> int:
    """Main function."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.log_level or os.getenv("LOG_LEVEL") or "INFO")
    logger = logging.getLogger(__name__)

    # Load configuration
    try:
        config = load_config(args.config, config_overrides(args))
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    setup_logging(config.log_level)

    logger.info(
        f"Starting push-proxy with target={config.target_addr}, "
        f"pushgateway={config.pushgateway_addr}, job={config.job}, "
        f"instance={config.instance}, interval={config.interval_s}s"
    )
    for key, value in config.labels.items():
        logger.info(f"Additional label: {key}={value}")
    if config.namespace:
        logger.info(f"Namespace: {config.namespace} ({config.namespace_placement})")
    logger.info(f"Auto-cleanup: {'enabled' if config.auto_cleanup else 'disabled'}")

    self_metrics = SelfMetrics()
    if config.metrics_port > 0:
        try:
            self_metrics.serve(config.metrics_port)
        except OSError:
            return 1

    relay = RelayLoop(config, self_metrics=self_metrics)
    logger.info(f"Pushing to {relay.push_url}")

    # Setup signal handlers
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        relay.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    relay.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
