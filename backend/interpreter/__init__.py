"""Realtime medical interpreter backend."""
