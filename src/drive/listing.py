"""
Result of listing a drive, plus a plain text table rendering of it.
"""
import enum
from typing import Iterator

from drive.record import File


class ListField(enum.IntFlag):
    """Bitmask selecting the columns of a rendered listing."""
    KEY = 1
    CID = 2
    SIZE = 4
    TIME = 8
    OWNER = 16


ALL_FIELDS = ListField.KEY | ListField.CID | ListField.SIZE | ListField.TIME | ListField.OWNER

_COLUMNS = [
    (ListField.KEY, "Key", lambda f: f.key),
    (ListField.CID, "Cid", lambda f: f.cid),
    (ListField.SIZE, "Size", lambda f: str(f.size)),
    (ListField.TIME, "Timestamp", lambda f: f.timestamp),
    (ListField.OWNER, "Owner", lambda f: f.owner),
]


class ListResult:
    files: list[File]

    def __init__(self, files: list[File]):
        # Byte order of the UTF-8 key, so that display order is deterministic
        self.files = sorted(files, key=lambda f: f.key.encode())

    def __iter__(self) -> Iterator[File]:
        return iter(self.files)

    def __len__(self) -> int:
        return len(self.files)

    def keys(self) -> list[str]:
        return [f.key for f in self.files]

    def render(self, mask: int = 0) -> str:
        """
        Render the listing as a fixed width table.

        Args:
            mask: ListField bits selecting columns; 0 selects all of them

        Returns:
            The table, or an empty string if there are no files
        """
        if not self.files:
            return ""
        m = ListField(mask & ALL_FIELDS) or ALL_FIELDS
        columns = [(label, value) for (bit, label, value) in _COLUMNS if bit & m]

        rows = [[value(f) for (_, value) in columns] for f in self.files]
        widths = [len(label) for (label, _) in columns]
        for row in rows:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(cell))

        def line(cells: list[str]) -> str:
            return "|" + "|".join(cell.ljust(widths[i]) for i, cell in enumerate(cells)) + "|"

        banner = line(["-" * w for w in widths])
        out = [banner, line([label for (label, _) in columns]), banner]
        out.extend(line(row) for row in rows)
        out.append(banner)
        return "\n".join(out) + "\n"
