"""Command-line interface for portalkey."""
