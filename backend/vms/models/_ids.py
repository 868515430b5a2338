import uuid


def new_id() -> str:
    """Opaque, globally unique row id."""
    return str(uuid.uuid4())
