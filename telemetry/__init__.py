"""Telemetry ingest and analytics service."""
