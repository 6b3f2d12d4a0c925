"""Connection lifecycle, configuration, errors, logging and retry helpers."""
