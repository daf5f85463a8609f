"""
Name to blob registry.

Layers that expose extra outputs (like the MVN mean and variance) look those
outputs up by name, so the order of the top vector does not matter.
"""

from typing import Dict, List, Optional

from .blob import Blob


class BlobFinder:
    """
    Maps blob names to blobs.

    Example:
        >>> finder = BlobFinder()
        >>> finder.add_blob('mean', mean_blob)
        >>> finder.pointer_from_name('mean') is mean_blob
        True
    """

    def __init__(self):
        self._blobs: Dict[str, Blob] = {}

    def add_blob(self, name: str, blob: Blob) -> None:
        self._blobs[name] = blob

    def pointer_from_name(self, name: str) -> Optional[Blob]:
        """Return the blob registered as `name`, or None."""
        return self._blobs.get(name)

    def name_from_pointer(self, blob: Blob) -> Optional[str]:
        for name, candidate in self._blobs.items():
            if candidate is blob:
                return name
        return None

    def exists(self, name: str) -> bool:
        return name in self._blobs

    def names(self) -> List[str]:
        return list(self._blobs.keys())

    def __len__(self) -> int:
        return len(self._blobs)
