"""Signaling envelopes and the client end of the relay protocol."""
