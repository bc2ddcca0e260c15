import uuid


def generate_id() -> str:
    """Opaque document id."""
    return uuid.uuid4().hex
