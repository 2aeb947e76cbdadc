"""Command line interface for smartcat."""
