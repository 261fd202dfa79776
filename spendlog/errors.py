class SpendlogError(Exception):
    """Base class for every error raised by spendlog."""


class StorageWriteFailed(SpendlogError):
    """A blob could not be written; the previously stored value is unchanged."""


class StorageReadCorrupt(SpendlogError):
    """A stored blob exists but could not be decoded."""


class ValidationFailed(SpendlogError, ValueError):
    """Input was rejected before any mutation took place."""


class DuplicateCategory(ValidationFailed):
    def __init__(self, category_id: str):
        super().__init__(f"Category already exists: {category_id}")
        self.category_id = category_id


class IndexOutOfRange(SpendlogError, IndexError):
    def __init__(self, index: int, size: int):
        super().__init__(f"No expense at index {index} (have {size})")
        self.index = index
        self.size = size
