"""Core building blocks: settings, errors, logging and the lock registry."""
