"""Stateless helpers shared by the core and the CLI."""
