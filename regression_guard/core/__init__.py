"""Domain model, configuration, scheduling and the detection service."""
