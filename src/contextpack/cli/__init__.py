"""contextpack command line interface."""
