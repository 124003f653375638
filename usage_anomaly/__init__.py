"""Usage anomaly detection and incident tracking for a team's AI assistant usage."""

__version__ = "0.1.0"
