"""Git operations helpers."""

from .manager import GitCommandError, GitRepositoryManager, authenticated_url

__all__ = ["GitCommandError", "GitRepositoryManager", "authenticated_url"]
