"""Cross-cutting utilities: logging setup, log sanitising, metrics."""
