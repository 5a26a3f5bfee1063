"""Gatekeeper — delegation routing and quality gating for supervisor/worker agents."""

__version__ = "0.1.0"
