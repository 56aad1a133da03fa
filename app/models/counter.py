from beanie import Document, Indexed


class Counter(Document):
    """Named monotonic sequence, advanced atomically with $inc."""
    name: Indexed(str, unique=True)
    seq: int = 0

    class Settings:
        name = "counters"
