# ask_tennis/providers/__init__.py
"""Third-party data providers that populate the relational store."""

from .github_csv import GithubCsvProvider
from .sportradar import SportradarProvider

__all__ = ["GithubCsvProvider", "SportradarProvider"]
