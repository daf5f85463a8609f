"""
Mean-Variance Normalization layer.

The layer normalizes each group of its input (one group per (sample, channel),
or per sample when `across_channels` is set) to zero mean and, optionally, unit
variance, and back-propagates the analytic gradient of that transform.

The computed mean and regularized standard deviation can be exposed as extra
top blobs. In that case the layer's internal statistics blobs share storage
with those tops, so forward writes are immediately visible to the caller.

Backward reads back only the variance. A caller who modifies the bound
variance top between forward and backward changes the gradient backward
computes, and a StatisticsAliasWarning is issued when that happens. Modifying
the bound mean top has no effect on the gradient, since backward works from
the output values rather than the stored mean. Do not modify the bound
variance before backward if you need the true gradient.

A layer instance is not reentrant: forward and backward must not run
concurrently on the same instance.
"""

from typing import List, Optional, Sequence

from ..blob import Blob, BlobFinder
from ..config import LayerParameter, validate_layer_param
from ..errors import MVNError, ShapeError
from .engines import Engine, select_engine
from .grouping import GroupGeometry, compute_grouping
from .mvn_forward import MVNBuffers
from .output_binding import MvnBlobOrdering, allocate_statistics, bind_statistics
from .registry import register_layer


@register_layer('MVN')
class MVNLayer:
    """
    Mean-Variance Normalization.

    Args:
        layer_param: Layer definition (see mvn_norm.config.LayerParameter)
        verbose: If True, print configuration and shape negotiation details

    Example:
        >>> layer = MVNLayer(LayerParameter())
        >>> bottom, top = [Blob(2, 3, 4, 5)], [Blob()]
        >>> GaussianFiller().fill(bottom[0])
        >>> layer.setup(bottom, top)
        >>> layer.forward(bottom, top)
        >>> top[0].diff.copy_(torch.randn(2, 3, 4, 5))
        >>> layer.backward(top, [True], bottom)
    """

    def __init__(self, layer_param: Optional[LayerParameter] = None, verbose: bool = False):
        self.layer_param = layer_param if layer_param is not None else LayerParameter()
        self.verbose = verbose

        self._configured = False
        self._engine: Optional[Engine] = None
        self._ordering: Optional[MvnBlobOrdering] = None
        self._blob_finder: Optional[BlobFinder] = None
        self._buffers: Optional[MVNBuffers] = None
        self._negotiated_bottom: Optional[Blob] = None
        self._negotiated_top: tuple = ()
        self._input_shape: tuple = ()

        self._mean: Optional[Blob] = None
        self._variance: Optional[Blob] = None
        self._temp: Optional[Blob] = None
        self._sum_multiplier: Optional[Blob] = None

    @property
    def type(self) -> str:
        return 'MVN'

    @property
    def param(self):
        return self.layer_param.mvn_param

    @property
    def engine(self) -> Optional[Engine]:
        return self._engine

    @property
    def geometry(self) -> Optional[GroupGeometry]:
        return self._buffers.geometry if self._buffers is not None else None

    @property
    def mean(self) -> Optional[Blob]:
        """Internal mean blob (aliases the bound mean top, if any)."""
        return self._mean

    @property
    def variance(self) -> Optional[Blob]:
        """Internal regularized-std blob (aliases the bound variance top, if any)."""
        return self._variance

    @property
    def buffers(self) -> Optional[MVNBuffers]:
        return self._buffers

    def exact_num_top_blobs(self) -> int:
        return 1 + int(self.param.has_mean) + int(self.param.has_variance)

    def configure(self) -> None:
        """
        Validate the configuration and select the compute engine.

        Raises:
            ConfigurationError: On an invalid option combination or an
                unavailable engine
        """
        validate_layer_param(self.layer_param)
        self._engine = select_engine(self.param.engine)
        self._configured = True

        if self.verbose:
            param = self.param
            print(f"\n{'='*80}")
            print(f"MVN layer '{self.layer_param.name}' configured")
            print(f"{'='*80}")
            print(f"  normalize_variance: {param.normalize_variance}")
            print(f"  across_channels:    {param.across_channels}")
            print(f"  mean blob:          {param.mean_blob or '(private)'}")
            print(f"  variance blob:      {param.variance_blob or '(private)'}")
            print(f"  eps:                {param.eps:g}")
            print(f"  engine:             {self._engine.name}")
            print(f"{'='*80}")

    def setup(
        self,
        bottom: Sequence[Blob],
        top: Sequence[Blob],
        blob_finder: Optional[BlobFinder] = None
    ) -> None:
        """Configure the layer and negotiate shapes for the given blobs."""
        self.configure()
        self.negotiate_shapes(bottom, top, blob_finder)

    def _ensure_internal_blobs(self, like: Blob) -> None:
        # Recreate internal blobs if the element type or device changed
        current = self._temp
        if current is not None and current.dtype == like.dtype and current.device == like.device:
            return
        self._mean = Blob(dtype=like.dtype, device=like.device)
        self._variance = Blob(dtype=like.dtype, device=like.device)
        self._temp = Blob(dtype=like.dtype, device=like.device)
        self._sum_multiplier = Blob(dtype=like.dtype, device=like.device)

    def negotiate_shapes(
        self,
        bottom: Sequence[Blob],
        top: Sequence[Blob],
        blob_finder: Optional[BlobFinder] = None
    ) -> None:
        """
        Derive group geometry and shape (or alias) every buffer.

        Safe to call again whenever the input shape changes. The blob finder
        given here is remembered for later automatic re-negotiation.

        Raises:
            ShapeError: On wrong blob counts, invalid input shape, in-place use,
                or dtype/device mismatches between blobs
        """
        if not self._configured:
            self.configure()
        if blob_finder is not None:
            self._blob_finder = blob_finder

        if len(bottom) != 1:
            raise ShapeError(
                f"MVN layer '{self.layer_param.name}' takes exactly 1 bottom blob, got {len(bottom)}"
            )
        input_blob = bottom[0]
        param = self.param

        geometry = compute_grouping(input_blob.shape, param.across_channels)

        if self._engine.device_type is not None and input_blob.device.type != self._engine.device_type:
            raise ShapeError(
                f"Engine '{self._engine.name}' needs {self._engine.device_type} blobs, "
                f"got input on {input_blob.device}"
            )

        ordering = MvnBlobOrdering(self.layer_param, top, self._blob_finder)
        data_top = ordering.data_blob(top)
        if data_top is input_blob or data_top.shares_data_with(input_blob):
            raise ShapeError(f"MVN layer '{self.layer_param.name}' cannot run in place")
        if data_top.dtype != input_blob.dtype or data_top.device != input_blob.device:
            raise ShapeError(
                f"Output blob {data_top} does not match input dtype {input_blob.dtype} "
                f"on {input_blob.device}"
            )

        # The normalized output always has the input shape
        data_top.reshape(*input_blob.shape)

        self._ensure_internal_blobs(input_blob)

        if ordering.has_mean:
            bind_statistics(self._mean, ordering.mean_blob(top), geometry.stats_shape)
        else:
            allocate_statistics(self._mean, geometry.stats_shape)

        if ordering.has_variance:
            bind_statistics(self._variance, ordering.variance_blob(top), geometry.stats_shape)
        else:
            allocate_statistics(self._variance, geometry.stats_shape)

        self._temp.reshape(*input_blob.shape)
        self._sum_multiplier.reshape(geometry.dim)
        self._sum_multiplier.data.fill_(1)

        self._ordering = ordering
        self._buffers = MVNBuffers(
            geometry=geometry,
            mean=self._mean,
            variance=self._variance,
            temp=self._temp,
            sum_multiplier=self._sum_multiplier,
            variance_bound=ordering.has_variance,
        )
        self._negotiated_bottom = input_blob
        self._negotiated_top = tuple(top)
        self._input_shape = input_blob.shape

        if self.verbose:
            print(f"MVN layer '{self.layer_param.name}': input {input_blob.shape} -> "
                  f"{geometry.num} groups of {geometry.dim}, statistics {geometry.stats_shape}")

    def _needs_negotiation(self, bottom: Sequence[Blob], top: Sequence[Blob]) -> bool:
        if self._buffers is None:
            return True
        if len(bottom) != 1 or bottom[0] is not self._negotiated_bottom:
            return True
        if len(top) != len(self._negotiated_top):
            return True
        if any(a is not b for a, b in zip(top, self._negotiated_top)):
            return True
        return bottom[0].shape != self._input_shape

    def forward(self, bottom: Sequence[Blob], top: Sequence[Blob]) -> None:
        """
        Normalize bottom[0] into the output top blob.

        Shapes are re-negotiated first when the input shape or the blobs
        differ from the last negotiation.
        """
        if self._needs_negotiation(bottom, top):
            self.negotiate_shapes(bottom, top)

        data_top = self._ordering.data_blob(top)
        self._engine.forward(
            bottom[0].data,
            data_top.data,
            self._buffers,
            self.param.normalize_variance,
            self.param.eps,
        )

    def _check_backward_shapes(self, top: Sequence[Blob], bottom: Sequence[Blob]) -> Blob:
        if self._buffers is None:
            raise MVNError(
                f"MVN layer '{self.layer_param.name}': backward called before forward"
            )
        if len(bottom) != 1:
            raise ShapeError(f"MVN backward takes exactly 1 bottom blob, got {len(bottom)}")
        if len(top) != self.exact_num_top_blobs():
            raise ShapeError(
                f"MVN backward expects {self.exact_num_top_blobs()} top blob(s), got {len(top)}"
            )

        data_top = self._ordering.data_blob(top)
        input_blob = bottom[0]
        if input_blob.shape != self._input_shape:
            raise ShapeError(
                f"Input shape {input_blob.shape} differs from the forward input "
                f"shape {self._input_shape}"
            )
        if data_top.shape != input_blob.shape:
            raise ShapeError(
                f"Output gradient shape {data_top.shape} does not match input shape "
                f"{input_blob.shape}"
            )
        stats_shape = self._buffers.geometry.stats_shape
        for name, blob in (('mean', self._mean), ('variance', self._variance)):
            if blob.shape != stats_shape:
                raise ShapeError(
                    f"The {name} statistics have shape {blob.shape}, expected {stats_shape}"
                )
        return data_top

    def backward(
        self,
        top: Sequence[Blob],
        propagate_down: List[bool],
        bottom: Sequence[Blob]
    ) -> None:
        """
        Compute bottom[0].diff from the output top's diff.

        Uses the output values and input values of the matching forward call.
        Does nothing when propagate_down[0] is False.

        Raises:
            ShapeError: If blob shapes differ from the matching forward call
        """
        if not propagate_down or not propagate_down[0]:
            return

        data_top = self._check_backward_shapes(top, bottom)
        self._engine.backward(
            data_top.data,
            data_top.diff,
            bottom[0].data,
            bottom[0].diff,
            self._buffers,
            self.param.normalize_variance,
            self.param.eps,
        )
