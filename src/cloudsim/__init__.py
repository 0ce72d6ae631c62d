"""cloudsim: deterministic cloud-infrastructure traffic simulation core."""

__version__ = "0.1.0"
