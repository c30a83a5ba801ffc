"""Identifiers for producer and consumer connections."""

import uuid


def generate_unique_id() -> str:
    """Return a new random (version 4) UUID in its canonical text form."""
    return str(uuid.uuid4())