import uuid


def new_id() -> str:
    """Opaque primary key for every table"""
    return str(uuid.uuid4())
