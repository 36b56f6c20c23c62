"""
UUID7 generation for run identifiers.

UUID7 values are time-ordered, so run ids sort roughly by start time.
"""

import uuid6


def generate_uuid7() -> str:
    """Generate a new UUID7 as a string."""
    return str(uuid6.uuid7())
