from dataclasses import dataclass

GIB = 1024 ** 3
SIZE_UNITS = ("B", "KB", "MB", "GB")


@dataclass
class StorageQuota:
    """Capacity accounting owned by a single BlobStore.

    ``used_bytes`` is a cached sum of stored record sizes. It only moves
    through :meth:`reserve`, :meth:`release` and :meth:`reset`, which the
    store calls around its own writes, deletes and startup scan.
    """
    capacity_bytes: int = GIB
    used_bytes: int = 0

    @property
    def available_bytes(self) -> int:
        return max(self.capacity_bytes - self.used_bytes, 0)

    @property
    def usage_ratio(self) -> float:
        if self.capacity_bytes <= 0:
            return 1.0
        return self.used_bytes / self.capacity_bytes

    def can_fit(self, size_bytes: int) -> bool:
        return self.used_bytes + size_bytes <= self.capacity_bytes

    def reserve(self, size_bytes: int) -> bool:
        if not self.can_fit(size_bytes):
            return False
        self.used_bytes += size_bytes
        return True

    def release(self, size_bytes: int) -> None:
        self.used_bytes = max(self.used_bytes - size_bytes, 0)

    def reset(self, used_bytes: int) -> None:
        self.used_bytes = used_bytes


def format_size(num_bytes: int) -> str:
    """Human readable size, base 1024, two decimals above one kilobyte."""
    if num_bytes < 1024:
        return f"{num_bytes} B"
    value = float(num_bytes)
    exponent = 0
    while value >= 1024 and exponent < len(SIZE_UNITS) - 1:
        value /= 1024
        exponent += 1
    return f"{value:.2f} {SIZE_UNITS[exponent]}"
