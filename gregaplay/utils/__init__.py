"""Cross-cutting utilities for the video assembly service.

Modules:
    logging: structlog configuration and logger factory.
    process: Non-blocking external process execution with timeouts.
"""
