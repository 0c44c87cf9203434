"""Main entry point for the dynamic vector exporter."""
import argparse
import logging
import sys
import threading
import signal

from prometheus_client import CollectorRegistry
import structlog

from dynvec.config import load_config
from dynvec.control_api import ControlAPI
from dynvec.engine import GCEngine, run_engine_thread
from dynvec.kinds import create_vector
from dynvec.prom_exporter import SelfMetrics, register_vector, start_exporter


def setup_logging(log_level: str, log_format: str, stream=None):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(stream)
    if log_format == "json":
        handler.setFormatter(json_formatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))

    logging.basicConfig(level=level, handlers=[handler], force=True)

    # Reduce noise from some libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def json_formatter() -> logging.Formatter:
    """One JSON object per line for stdlib log records, rendered by structlog."""
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
    )


def main():
    """Main function."""
    parser = argparse.ArgumentParser(
        description="Dynamic Vector Exporter - Prometheus metrics with runtime label keys"
    )
    parser.add_argument(
        "--config",
        "-c",
        required=True,
        help="Path to configuration YAML file"
    )

    args = parser.parse_args()

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    logger.info(f"Configuration loaded from: {args.config}")
    logger.info(f"GC interval: {config.global_.gc_interval_s}s")
    logger.info(f"Vectors configured: {len(config.vectors)}")

    # Custom registry so default process metrics are not exported
    registry = CollectorRegistry()
    self_metrics = SelfMetrics(registry=registry, prefix=config.exporter.prefix)

    vectors = {}
    for opts in config.vectors:
        vector = create_vector(opts)
        register_vector(registry, vector)
        vectors[vector.name] = vector

    if config.exporter.enabled:
        start_exporter(config.exporter, registry)
    else:
        logger.info("Prometheus exporter disabled")

    engine = GCEngine(vectors, config.global_.gc_interval_s, self_metrics)
    control_api = ControlAPI(engine)

    engine_thread = threading.Thread(
        target=run_engine_thread,
        args=(engine,),
        daemon=True
    )
    engine_thread.start()
    logger.info("GC engine started")

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        engine.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Run control API (blocking)
    logger.info(f"Starting control API on port {config.global_.control_api_port}")
    try:
        control_api.run(
            host="0.0.0.0",
            port=config.global_.control_api_port
        )
    except Exception as e:
        logger.error(f"Control API error: {e}", exc_info=True)
        engine.stop()
        sys.exit(1)


if __name__ == "__main__":
    main()
