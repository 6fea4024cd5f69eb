"""Command-line entry point (`tavern-save`)."""
