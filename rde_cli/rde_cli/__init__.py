"""Command line interface for AEM Rapid Development Environments."""
