"""Thin async clients for the remote services the toolbox reads from."""
