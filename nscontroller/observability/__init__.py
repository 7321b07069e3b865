"""Logging and metrics for nscontroller."""
