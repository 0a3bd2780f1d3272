"""cms-starter: scaffold a Payload CMS site and provision it on Railway and GitHub."""

__version__ = "0.1.0"
