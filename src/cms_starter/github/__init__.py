"""GitHub client."""

from .client import GitHubAPIError, GitHubClient, GitHubRepo, WorkflowRun, encrypt_secret

__all__ = ["GitHubAPIError", "GitHubClient", "GitHubRepo", "WorkflowRun", "encrypt_secret"]
