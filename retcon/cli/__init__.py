"""retcon command-line interface."""
