"""Core of the RDE command line: polling, HTTP access and operation tracking."""
