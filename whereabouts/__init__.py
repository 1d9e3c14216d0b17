"""Peer-to-peer location sharing with per-friend privacy granularity."""
