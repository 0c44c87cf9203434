"""Periodic garbage collection of dynamic vectors."""
import threading
import time
import logging
from typing import Dict, Optional

from dynvec.prom_exporter import SelfMetrics
from dynvec.vector import GCStats, Vector

logger = logging.getLogger(__name__)


class GCEngine:
    """Runs garbage collection over a set of named vectors."""

    def __init__(
        self,
        vectors: Dict[str, Vector],
        interval_s: float,
        self_metrics: Optional[SelfMetrics] = None
    ):
        self.vectors = vectors
        self.interval_s = interval_s
        self.self_metrics = self_metrics
        self.sweep_count = 0
        self.last_sweep: Optional[float] = None
        self.start_time = time.time()
        self._stop = threading.Event()

    def sweep(self) -> Dict[str, GCStats]:
        """Garbage collect every vector once."""
        sweep_start = time.time()
        results: Dict[str, GCStats] = {}

        for name, vector in self.vectors.items():
            try:
                stats = vector.gc()
            except Exception as e:
                logger.error(f"Error collecting garbage for vector '{name}': {e}", exc_info=True)
                continue

            results[name] = stats

            if stats.limit_exceeded:
                logger.warning(
                    f"Vector '{name}' exceeded max length {vector.max_length}, "
                    f"reset {stats.deleted} instances"
                )
            elif stats.deleted:
                logger.info(f"Vector '{name}': deleted {stats.deleted} expired instances")

            if self.self_metrics:
                self.self_metrics.record_gc(name, stats.deleted, stats.limit_exceeded)
                self.self_metrics.set_vector_length(name, vector.length())

        if self.self_metrics:
            self.self_metrics.record_gc_duration(time.time() - sweep_start)

        self.sweep_count += 1
        self.last_sweep = sweep_start
        return results

    def run(self):
        """Sweep every interval until stopped."""
        logger.info(f"Starting GC engine for {len(self.vectors)} vectors, interval {self.interval_s}s")

        while not self._stop.wait(self.interval_s):
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Error in GC sweep: {e}", exc_info=True)

    def stop(self):
        """Stop the GC loop."""
        logger.info("Stopping GC engine")
        self._stop.set()


def run_engine_thread(engine: GCEngine):
    """Run engine in a separate thread."""
    try:
        engine.run()
    except Exception as e:
        logger.error(f"Engine thread error: {e}", exc_info=True)
        engine.stop()
