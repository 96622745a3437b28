"""draftline-cli: Command line interface for draftline."""
