"""kb-publish core library.

This package builds and ships the knowledge-base site: search index
generation, FTP/FTPS upload of the build output, remote backups, and
setup/site validation.

Repo rules:
- Content pages live under public/content/ and are never edited by tooling.
- Credentials come from the environment (or .env), never from the repo.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
