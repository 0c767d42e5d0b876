"""Logging, telemetry and diagnostics"""
