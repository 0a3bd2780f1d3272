"""Error hierarchy shared across the provisioning pipeline."""

from __future__ import annotations


class ProvisioningError(RuntimeError):
    """Base class for every failure a collaborator can surface to a step."""


class PreflightError(ProvisioningError):
    """Raised before any external resource exists (bad input, local conflicts)."""
