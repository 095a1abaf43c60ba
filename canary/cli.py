"""
Canary Controller CLI.

Runs the reconcile loop against a cluster, or against an in-memory
cluster seeded from manifest files with ``--dry-run``.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

import yaml

from canary.canary_manager import CanaryManager
from canary.config import ControllerConfig
from canary.scheduler import run_controller
from cluster.accessor import ResourceAccessor
from cluster.backend import ClusterBackend, KubernetesBackend
from cluster.memory import InMemoryBackend
from logging_ import setup_logging
from monitoring import MetricsRegistry, PrometheusProvider, start_metrics_server

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="canary-controller",
        description="Progressive delivery controller for Canary resources",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  canary-controller --namespace test --metrics-server http://prometheus:9090
  canary-controller --config controller.yaml --log-json
  canary-controller --dry-run --manifests podinfo.yaml --once
        """,
    )
    parser.add_argument("--config", "-c", help="YAML configuration file")
    parser.add_argument("--namespace", "-n", help="Namespace to watch (default: all)")
    parser.add_argument("--metrics-server", help="Prometheus URL used for canary analysis")
    parser.add_argument("--mesh-provider", choices=["istio", "linkerd"], help="Service mesh provider")
    parser.add_argument("--workers", type=int, help="Concurrent reconcile workers")
    parser.add_argument("--resync-interval", type=float, help="Seconds between full resyncs")
    parser.add_argument("--listen-port", type=int, help="Port for the /metrics endpoint")
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error"], help="Log level")
    parser.add_argument("--log-json", action="store_true", default=None, help="Emit JSON log lines")
    parser.add_argument("--dry-run", action="store_true", help="Reconcile an in-memory cluster")
    parser.add_argument(
        "--manifests", "-f", action="append", default=[],
        help="YAML manifests seeding the in-memory cluster (with --dry-run)",
    )
    parser.add_argument("--once", action="store_true", help="Run a single resync and exit")
    return parser


def load_manifests(paths: List[str]) -> List[dict]:
    """Read every document of every manifest file."""
    objects = []
    for path in paths:
        with open(path) as f:
            objects.extend(doc for doc in yaml.safe_load_all(f) if doc)
    return objects


def build_backend(args: argparse.Namespace, config: ControllerConfig) -> ClusterBackend:
    if args.dry_run:
        objects = load_manifests(args.manifests)
        logger.info(f"Dry run: in-memory cluster with {len(objects)} objects")
        return InMemoryBackend(objects)
    return KubernetesBackend(request_timeout=config.api_timeout)


async def run(args: argparse.Namespace, config: ControllerConfig) -> int:
    metrics = MetricsRegistry()
    if not args.once:
        start_metrics_server(config.listen_port, registry=metrics)
        logger.info(f"Serving metrics on :{config.listen_port}/metrics")

    accessor = ResourceAccessor(build_backend(args, config), timeout=config.api_timeout)
    provider = PrometheusProvider(
        config.metrics_server,
        query_templates=config.query_templates,
        timeout=config.metric_timeout,
    )
    manager = CanaryManager.from_config(accessor, provider, config, metrics=metrics)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info(
        f"Watching canaries in {config.namespace or 'all namespaces'} "
        f"(mesh={config.mesh_provider}, workers={config.workers})"
    )
    await run_controller(manager.reconcile, accessor, config, stop_event, once=args.once)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = ControllerConfig.load(
            args.config,
            namespace=args.namespace,
            metrics_server=args.metrics_server,
            mesh_provider=args.mesh_provider,
            workers=args.workers,
            resync_interval=args.resync_interval,
            listen_port=args.listen_port,
            log_level=args.log_level,
            log_json=args.log_json,
        )
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(config.log_level, config.log_json)

    try:
        return asyncio.run(run(args, config))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
