"""Reporting utilities for tensornets runs."""

from .artifacts import write_manifest
from .metrics import CsvSink, JsonlSink, MetricsCapture

__all__ = ["CsvSink", "JsonlSink", "MetricsCapture", "write_manifest"]
