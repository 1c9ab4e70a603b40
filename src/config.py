"""
Configuration module for kapply.

Loads configuration from environment variables. The resulting Config value
is passed explicitly to build_reconciler(); nothing here is process-global.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class ClusterConfig:
    """Cluster API connection configuration."""

    server: str = "http://localhost:8080"
    token: str = field(default="", repr=False)  # Never log the token
    certificate_authority: Optional[str] = None
    insecure_skip_tls_verify: bool = False
    namespace: str = "default"
    request_timeout: float = 30.0  # seconds

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            server=os.getenv("KAPPLY_SERVER", "http://localhost:8080"),
            token=os.getenv("KAPPLY_TOKEN", ""),
            certificate_authority=os.getenv("KAPPLY_CERTIFICATE_AUTHORITY") or None,
            insecure_skip_tls_verify=os.getenv(
                "KAPPLY_INSECURE_SKIP_TLS_VERIFY", "false"
            ).lower()
            == "true",
            namespace=os.getenv("KAPPLY_NAMESPACE", "default"),
            request_timeout=float(os.getenv("KAPPLY_REQUEST_TIMEOUT", "30")),
        )


@dataclass
class ApplyConfig:
    """Apply, prune and delete behaviour."""

    max_concurrent_operations: int = 5

    # Exponential backoff while a new kind is being registered
    backoff_base_delay: float = 0.5  # base delay in seconds
    backoff_max_delay: float = 8.0  # max delay in seconds
    backoff_jitter_factor: float = 0.1  # ±10% jitter
    registration_max_attempts: int = 10
    registration_timeout: float = 60.0  # seconds

    # Overall deadline for one command (None = no deadline)
    operation_timeout: Optional[float] = None

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        operation_timeout = os.getenv("KAPPLY_OPERATION_TIMEOUT")
        return cls(
            max_concurrent_operations=int(
                os.getenv("KAPPLY_MAX_CONCURRENT_OPERATIONS", "5")
            ),
            backoff_base_delay=float(os.getenv("KAPPLY_BACKOFF_BASE_DELAY", "0.5")),
            backoff_max_delay=float(os.getenv("KAPPLY_BACKOFF_MAX_DELAY", "8")),
            backoff_jitter_factor=float(
                os.getenv("KAPPLY_BACKOFF_JITTER_FACTOR", "0.1")
            ),
            registration_max_attempts=int(
                os.getenv("KAPPLY_REGISTRATION_MAX_ATTEMPTS", "10")
            ),
            registration_timeout=float(
                os.getenv("KAPPLY_REGISTRATION_TIMEOUT", "60")
            ),
            operation_timeout=float(operation_timeout) if operation_timeout else None,
        )


@dataclass
class ProviderConfig:
    """Config provider configuration."""

    # Enabled provider names in the order they are tried (empty = all registered)
    enabled_providers: List[str] = field(default_factory=list)
    kustomize_binary: str = "kustomize"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        enabled_str = os.getenv("KAPPLY_ENABLED_PROVIDERS", "")
        enabled = (
            [p.strip() for p in enabled_str.split(",") if p.strip()]
            if enabled_str
            else []
        )
        return cls(
            enabled_providers=enabled,
            kustomize_binary=os.getenv("KAPPLY_KUSTOMIZE_BINARY", "kustomize"),
        )


@dataclass
class Config:
    """Main configuration object."""

    cluster: ClusterConfig
    apply: ApplyConfig
    providers: ProviderConfig
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            cluster=ClusterConfig.from_env(),
            apply=ApplyConfig.from_env(),
            providers=ProviderConfig.from_env(),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            cluster=ClusterConfig(),
            apply=ApplyConfig(),
            providers=ProviderConfig(),
        )
