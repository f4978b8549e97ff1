"""Command-line load probe for the request scheduler."""
