"""Process driver: logging setup, account context and the run loop."""
