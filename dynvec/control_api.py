"""Control API for runtime management using FastAPI."""
from typing import Dict
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
import logging
import time

from dynvec.engine import GCEngine
from dynvec.kinds import CounterVector, GaugeVector, HistogramVector
from dynvec.vector import CapacityExceededError, DynamicVectorError, Vector

logger = logging.getLogger(__name__)


class RecordRequest(BaseModel):
    """Request to record a value for a label set."""
    labels: Dict[str, str] = Field(default_factory=dict)
    value: float = 1.0


class DeleteRequest(BaseModel):
    """Request to delete the instance of a label set."""
    labels: Dict[str, str] = Field(default_factory=dict)


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


class ControlAPI:
    """FastAPI-based control API for runtime management."""

    def __init__(self, engine: GCEngine):
        """
        Initialize control API.

        Args:
            engine: GC engine holding the named vectors
        """
        self.engine = engine
        self.app = FastAPI(title="Dynamic Vector Control API")
        self._setup_routes()

    def _vector(self, name: str) -> Vector:
        vector = self.engine.vectors.get(name)
        if vector is None:
            raise HTTPException(
                status_code=404,
                detail=f"Vector '{name}' not found. Available vectors: {list(self.engine.vectors)}"
            )
        return vector

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        async def status():
            """Get current vector status."""
            vectors = {}
            for name, vector in self.engine.vectors.items():
                desc = vector.describe()
                vectors[name] = {
                    "type": desc.type,
                    "length": vector.length(),
                    "label_keys": list(desc.variable_labels),
                    "label_names": desc.label_names,
                    "const_labels": desc.const_labels,
                    "expire_s": vector.expire_s,
                    "max_length": vector.max_length,
                }

            return {
                "uptime_seconds": time.time() - self.engine.start_time,
                "sweep_count": self.engine.sweep_count,
                "last_sweep": self.engine.last_sweep,
                "vectors": vectors,
            }

        @self.app.post("/vectors/{name}/record")
        def record(name: str, request: RecordRequest):
            """Record a value: counters add, gauges set, histograms observe."""
            vector = self._vector(name)

            try:
                metric = vector.get_metric_with(request.labels)
            except CapacityExceededError as e:
                if self.engine.self_metrics:
                    self.engine.self_metrics.record_capacity_rejection(name)
                raise HTTPException(status_code=429, detail=str(e))
            except DynamicVectorError as e:
                raise HTTPException(status_code=400, detail=str(e))

            try:
                if isinstance(vector, CounterVector):
                    metric.inc(request.value)
                elif isinstance(vector, GaugeVector):
                    metric.set(request.value)
                elif isinstance(vector, HistogramVector):
                    metric.observe(request.value)
                else:
                    raise HTTPException(
                        status_code=501,
                        detail=f"Recording not supported for {vector.metric_type} vectors"
                    )
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

            return {"status": "recorded", "vector": name, "labels": metric.labels}

        @self.app.post("/vectors/{name}/delete")
        def delete(name: str, request: DeleteRequest):
            """Delete the instance matching a label set exactly."""
            vector = self._vector(name)
            deleted = vector.delete(request.labels)
            logger.info(f"Delete on vector '{name}' with {request.labels}: deleted={deleted}")
            return {"deleted": deleted}

        @self.app.post("/vectors/{name}/reset")
        def reset(name: str):
            """Drop every instance and label key of a vector."""
            vector = self._vector(name)
            vector.reset()
            logger.info(f"Vector '{name}' reset")
            return {"status": "reset", "vector": name, "timestamp": time.time()}

        @self.app.post("/control/gc")
        def gc():
            """Run a garbage collection sweep now."""
            results = self.engine.sweep()
            return {
                name: {"deleted": stats.deleted, "limit_exceeded": stats.limit_exceeded}
                for name, stats in results.items()
            }

        @self.app.post("/control/loglevel")
        async def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(getattr(logging, level))
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 8081):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
