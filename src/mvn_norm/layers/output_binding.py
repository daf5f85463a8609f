"""
Binding of the internal mean/variance blobs to caller-visible top blobs.

When the layer parameter names a mean or variance blob, the layer's internal
statistics blob shares storage with that top blob instead of owning private
memory. Writes made by forward are then directly visible to the caller, and
writes made by the caller are visible to the layer.
"""

from typing import Optional, Sequence, Tuple

from ..blob import Blob, BlobFinder
from ..config import LayerParameter
from ..errors import ShapeError


class MvnBlobOrdering:
    """
    Locates the normalized output, mean and variance blobs in the top vector.

    Resolution order for a bound statistics blob:
        1. By name through the BlobFinder, if one is given and knows the name
        2. By the position of its name in `layer_param.top`
        3. By default position: output, then mean, then variance

    Args:
        layer_param: Layer definition
        top: Top blob vector
        blob_finder: Optional name lookup

    Raises:
        ShapeError: If the number of top blobs does not match the bindings, or a
            named blob cannot be located in the top vector
    """

    def __init__(
        self,
        layer_param: LayerParameter,
        top: Sequence[Blob],
        blob_finder: Optional[BlobFinder] = None
    ):
        param = layer_param.mvn_param
        self.has_mean = param.has_mean
        self.has_variance = param.has_variance

        expected = 1 + int(self.has_mean) + int(self.has_variance)
        if len(top) != expected:
            raise ShapeError(
                f"MVN layer '{layer_param.name}' expects {expected} top blob(s), got {len(top)}"
            )

        # Default positions: output at 0, then mean, then variance
        self.mean_index = None
        self.variance_index = None
        if self.has_mean:
            self.mean_index = self._resolve(
                param.mean_blob, layer_param, top, blob_finder, 1
            )
        if self.has_variance:
            self.variance_index = self._resolve(
                param.variance_blob, layer_param, top, blob_finder,
                2 if self.has_mean else 1
            )

        taken = {self.mean_index, self.variance_index} - {None}
        remaining = [i for i in range(len(top)) if i not in taken]
        if len(remaining) != 1:
            raise ShapeError(
                f"MVN layer '{layer_param.name}': mean and variance resolve to the same top blob"
            )
        self.data_index = remaining[0]

    @staticmethod
    def _resolve(
        name: str,
        layer_param: LayerParameter,
        top: Sequence[Blob],
        blob_finder: Optional[BlobFinder],
        default_index: int
    ) -> int:
        if blob_finder is not None and blob_finder.exists(name):
            blob = blob_finder.pointer_from_name(name)
            for i, candidate in enumerate(top):
                if candidate is blob:
                    return i
            raise ShapeError(
                f"Blob '{name}' is registered in the BlobFinder but is not in the top vector"
            )
        if len(layer_param.top) == len(top) and name in layer_param.top:
            return layer_param.top.index(name)
        return default_index

    def data_blob(self, top: Sequence[Blob]) -> Blob:
        return top[self.data_index]

    def mean_blob(self, top: Sequence[Blob]) -> Optional[Blob]:
        return top[self.mean_index] if self.has_mean else None

    def variance_blob(self, top: Sequence[Blob]) -> Optional[Blob]:
        return top[self.variance_index] if self.has_variance else None


def bind_statistics(internal: Blob, external: Blob, stats_shape: Tuple[int, ...]) -> None:
    """
    Alias `internal` onto `external` after shaping both to `stats_shape`.

    Both value and gradient storage are shared. The external blob must have the
    element type of the internal one.
    """
    if external.dtype != internal.dtype or external.device != internal.device:
        raise ShapeError(
            f"Statistics blob {external} does not match the layer's "
            f"dtype {internal.dtype} on {internal.device}"
        )
    external.reshape(*stats_shape)
    # Reshaping while still aliased to a previous top would grow that top's storage
    if not internal.shares_data_with(external) or not internal.shares_diff_with(external):
        internal.release_storage()
    internal.reshape_like(external)
    internal.alias_storage(external)


def allocate_statistics(internal: Blob, stats_shape: Tuple[int, ...]) -> None:
    """Shape a private (unbound) statistics blob."""
    internal.reshape(*stats_shape)

