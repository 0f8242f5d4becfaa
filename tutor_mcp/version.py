"""Single source of truth for the package version."""

VERSION = "0.4.0"
