"""TaskLoop command line interface."""
