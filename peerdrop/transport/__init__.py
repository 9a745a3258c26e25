"""Peer connection adapters for real networks."""
