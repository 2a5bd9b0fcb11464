"""Store error taxonomy"""


class StoreError(Exception):
    """Base class for every error raised by the persistence layer"""


class StorageIOError(StoreError):
    """The SQLite engine or connection failed"""


class MigrationError(StorageIOError):
    """The schema could not be brought to the latest version"""


class ConstraintError(StoreError):
    """A primary-key or foreign-key constraint was violated"""


class DuplicateSubscriptionError(ConstraintError):
    """The chat is already subscribed to the subreddit"""

    def __init__(self, chat_id: int, subreddit: str):
        super().__init__(f"chat {chat_id} is already subscribed to r/{subreddit}")
        self.chat_id = chat_id
        self.subreddit = subreddit


class NotFoundError(StoreError):
    """The requested row does not exist"""


class DataCorruptionError(StoreError):
    """A persisted value could not be decoded"""

    def __init__(self, column: str, value):
        super().__init__(f"unrecognised value {value!r} in column '{column}'")
        self.column = column
        self.value = value
