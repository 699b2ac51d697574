"""HTTP API for the monitoring engine."""
