"""Building blocks for a single-node local Kubernetes cluster."""

__version__ = "0.10.0"

__all__ = [
    "dockerenv",
    "kube2sky",
    "localkube",
    "servers",
    "service",
]