"""Core module for configuration, logging, errors and outbound requests."""
