"""zai-cli command-line interface."""
