"""Shared HTTP plumbing for remote clients."""
