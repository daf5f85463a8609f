"""
N-dimensional blob with a value buffer and a gradient buffer.

A Blob does not own its buffers directly. Each buffer lives in a BlobStorage
object, and sharing a buffer between two blobs means both blobs hold the same
BlobStorage. Growing a shared storage reallocates inside that object, so every
blob aliasing it keeps seeing the same memory.
"""

from math import prod
from typing import Optional, Tuple

import torch

from ..errors import ShapeError


class BlobStorage:
    """
    Flat, growable buffer shared by reference between blobs.

    Attributes:
        tensor: 1D tensor holding at least `capacity` elements
        dtype: Element type of the buffer
        device: Device the buffer lives on
    """

    def __init__(self, dtype: torch.dtype, device: torch.device):
        self.dtype = dtype
        self.device = device
        self.tensor = torch.zeros(0, dtype=dtype, device=device)

    @property
    def capacity(self) -> int:
        return self.tensor.numel()

    def reserve(self, count: int) -> None:
        """Grow the buffer to hold `count` elements. Existing contents are dropped on growth."""
        if count > self.capacity:
            self.tensor = torch.zeros(count, dtype=self.dtype, device=self.device)

    def view(self, shape: Tuple[int, ...]) -> torch.Tensor:
        if not shape:
            return self.tensor[:0]
        count = prod(shape)
        return self.tensor[:count].view(shape)


class Blob:
    """
    Tensor container used as layer input and output.

    The blob shape is typically (num, channels, height, width). Values are read
    and written through `data`, gradients through `diff`; both are views onto
    the underlying storage, so in-place writes are visible to every blob that
    aliases the same storage.

    Args:
        *shape: Initial shape (may be empty)
        dtype: Element type, default float32
        device: Device for the buffers, default CPU

    Example:
        >>> blob = Blob(2, 3, 4, 5)
        >>> blob.count
        120
        >>> blob.data.fill_(1.0)
    """

    def __init__(
        self,
        *shape: int,
        dtype: torch.dtype = torch.float32,
        device: Optional[torch.device] = None
    ):
        if device is None:
            device = torch.device('cpu')
        self.dtype = dtype
        self.device = torch.device(device)
        self._data = BlobStorage(dtype, self.device)
        self._diff = BlobStorage(dtype, self.device)
        self._shape: Tuple[int, ...] = ()
        if shape:
            self.reshape(*shape)

    @classmethod
    def from_tensor(cls, tensor: torch.Tensor) -> 'Blob':
        """Create a blob holding a copy of `tensor` as its data."""
        blob = cls(*tensor.shape, dtype=tensor.dtype, device=tensor.device)
        blob.data.copy_(tensor)
        return blob

    def reshape(self, *shape: int) -> None:
        """
        Change the blob shape, growing the buffers if needed.

        Raises:
            ShapeError: If any axis is negative
        """
        if len(shape) == 1 and isinstance(shape[0], (tuple, list, torch.Size)):
            shape = tuple(shape[0])
        shape = tuple(int(s) for s in shape)
        if any(s < 0 for s in shape):
            raise ShapeError(f"Blob axes must be non-negative, got {shape}")
        self._shape = shape
        count = self.count
        self._data.reserve(count)
        self._diff.reserve(count)

    def reshape_like(self, other: 'Blob') -> None:
        self.reshape(*other.shape)

    @property
    def shape(self) -> Tuple[int, ...]:
        return self._shape

    @property
    def count(self) -> int:
        return prod(self._shape) if self._shape else 0

    def _legacy_axis(self, index: int) -> int:
        # Missing trailing axes read as 1 so 2D/3D blobs behave like (N, C, 1, 1).
        if index < len(self._shape):
            return self._shape[index]
        return 1

    @property
    def num(self) -> int:
        return self._legacy_axis(0)

    @property
    def channels(self) -> int:
        return self._legacy_axis(1)

    @property
    def height(self) -> int:
        return self._legacy_axis(2)

    @property
    def width(self) -> int:
        return self._legacy_axis(3)

    @property
    def data(self) -> torch.Tensor:
        return self._data.view(self._shape)

    @property
    def diff(self) -> torch.Tensor:
        return self._diff.view(self._shape)

    def data_at(self, *index: int) -> float:
        return self.data[index].item()

    def diff_at(self, *index: int) -> float:
        return self.diff[index].item()

    def share_data(self, other: 'Blob') -> None:
        """
        Make this blob's value buffer the same storage as `other`'s.

        Raises:
            ShapeError: If the element counts differ
        """
        if self.count != other.count:
            raise ShapeError(
                f"Cannot share data between blobs of different counts: "
                f"{self.count} vs {other.count}"
            )
        self._data = other._data

    def share_diff(self, other: 'Blob') -> None:
        """Make this blob's gradient buffer the same storage as `other`'s."""
        if self.count != other.count:
            raise ShapeError(
                f"Cannot share diff between blobs of different counts: "
                f"{self.count} vs {other.count}"
            )
        self._diff = other._diff

    def alias_storage(self, other: 'Blob') -> None:
        """Share both value and gradient storage with `other`."""
        self.share_data(other)
        self.share_diff(other)

    def release_storage(self) -> None:
        """
        Drop any shared storage and give this blob fresh, private buffers.

        Blobs that shared storage with this one keep their contents. The new
        buffers are zero-filled at the current shape.
        """
        self._data = BlobStorage(self.dtype, self.device)
        self._diff = BlobStorage(self.dtype, self.device)
        self.reshape(*self._shape)

    def shares_data_with(self, other: 'Blob') -> bool:
        return self._data is other._data

    def shares_diff_with(self, other: 'Blob') -> bool:
        return self._diff is other._diff

    def __repr__(self) -> str:
        return f"Blob(shape={self._shape}, dtype={self.dtype}, device={self.device})"
