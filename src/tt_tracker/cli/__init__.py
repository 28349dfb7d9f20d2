"""Command line interface for tt."""
