"""Command line interface for tensornets."""
