"""API routers package."""

from transfer_recon.routers import transfers

__all__ = ["transfers"]
