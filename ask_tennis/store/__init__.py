"""Relational store (DuckDB), table catalogue and loaders."""
