"""Railway infrastructure client."""

from .client import RailwayAPIError, RailwayClient, RailwayProject, generate_secret

__all__ = ["RailwayAPIError", "RailwayClient", "RailwayProject", "generate_secret"]
