"""Configuration models using Pydantic for validation."""
from typing import Dict, List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import os

from dynvec.labels import validate_label_names


class VectorOpts(BaseModel):
    """Options for a single dynamic metric vector."""
    # Namespace, subsystem and name are joined with "_" into the
    # fully-qualified metric name. Only name is mandatory.
    name: str
    namespace: str = ""
    subsystem: str = ""
    help: str = ""
    type: Literal["counter", "gauge", "histogram"] = "counter"

    # Labels fixed at construction and attached to every instance
    const_labels: Dict[str, str] = Field(default_factory=dict)

    # Histogram only; None means prometheus_client defaults
    buckets: Optional[List[float]] = None

    # How long an untouched instance is kept. Zero means never expire.
    expire_s: float = Field(default=0.0, ge=0)

    # Maximum number of instances. Zero means unbounded.
    max_length: int = Field(default=0, ge=0)

    @property
    def fq_name(self) -> str:
        """Fully-qualified metric name."""
        return "_".join(part for part in (self.namespace, self.subsystem, self.name) if part)

    @field_validator('const_labels')
    @classmethod
    def validate_const_labels(cls, v):
        if not validate_label_names(v):
            raise ValueError(f"Invalid constant label names: {sorted(v)}")
        return v

    @field_validator('buckets')
    @classmethod
    def validate_buckets(cls, v):
        if v is not None and not v:
            raise ValueError("Histogram buckets must not be empty")
        return v


class PrometheusExporterConfig(BaseModel):
    """Prometheus pull exporter configuration."""
    enabled: bool = True
    port: int = 8000
    prefix: str = "dynvec_"
    bind_address: str = "0.0.0.0"


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    gc_interval_s: float = Field(default=10.0, gt=0)
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"
    control_api_port: int = 8081


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    exporter: PrometheusExporterConfig = Field(default_factory=PrometheusExporterConfig)
    vectors: List[VectorOpts] = Field(default_factory=list)

    @field_validator('vectors')
    @classmethod
    def validate_vectors(cls, v):
        """Validate vector configurations."""
        if not v:
            raise ValueError("At least one vector must be defined")

        names = [opts.fq_name for opts in v]
        if len(names) != len(set(names)):
            raise ValueError("Vector names must be unique")

        return v

    @model_validator(mode='after')
    def validate_bucket_usage(self):
        """Ensure buckets are only set on histograms."""
        for opts in self.vectors:
            if opts.buckets is not None and opts.type != "histogram":
                raise ValueError(f"Vector '{opts.fq_name}' sets buckets but is a {opts.type}")
        return self


def load_config(config_path: str) -> Config:
    """Load and validate configuration from YAML file."""
    import yaml

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    if env_log_level := os.getenv('LOG_LEVEL'):
        raw_config.setdefault('global', {})['log_level'] = env_log_level

    if env_gc_interval := os.getenv('GC_INTERVAL_S'):
        raw_config.setdefault('global', {})['gc_interval_s'] = env_gc_interval

    try:
        return Config(**raw_config)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {e}")
