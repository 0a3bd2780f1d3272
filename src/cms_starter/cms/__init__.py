"""Payload CMS client."""

from .client import CMSAPIError, PayloadClient, lexical_paragraph

__all__ = ["CMSAPIError", "PayloadClient", "lexical_paragraph"]
