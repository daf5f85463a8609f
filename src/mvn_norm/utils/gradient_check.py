"""
Finite-difference gradient checking for layers.

A layer is checked by comparing the input gradient its backward computes with
a centered finite-difference estimate of an objective built from its outputs:

    estimated = (J(x + h) - J(x - h)) / (2h)

The objective is either a weighted sum of the outputs (weights play the role of
the output gradient), half the sum of squared outputs, or a single output
element.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import torch
from tqdm import tqdm

from ..blob import Blob


@dataclass
class GradientMismatch:
    """One input element whose analytic and estimated gradients disagree."""
    bottom_id: int
    feat_id: int
    computed: float
    estimated: float
    top_id: int = -1
    top_data_id: int = -1

    def __str__(self) -> str:
        return (
            f"bottom {self.bottom_id}[{self.feat_id}] (top {self.top_id}[{self.top_data_id}]): "
            f"computed {self.computed:.6g} vs estimated {self.estimated:.6g}"
        )


@dataclass
class GradientCheckResult:
    """Summary of one gradient check."""
    num_checked: int = 0
    max_error: float = 0.0
    mismatches: List[GradientMismatch] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.mismatches

    def merge(self, other: 'GradientCheckResult') -> None:
        self.num_checked += other.num_checked
        self.max_error = max(self.max_error, other.max_error)
        self.mismatches.extend(other.mismatches)


class GradientChecker:
    """
    Checks a layer's backward against finite differences of its forward.

    The layer must provide `setup(bottom, top)`, `forward(bottom, top)` and
    `backward(top, propagate_down, bottom)`.

    Args:
        stepsize: Finite-difference step h
        threshold: Allowed error, scaled by max(|computed|, |estimated|, 1)
        kink: Input value where the layer is not differentiable
        kink_range: Inputs within this distance of `kink` are skipped (<0: never skip)
        verbose: If True, print a summary and show progress with tqdm

    Example:
        >>> checker = GradientChecker(1e-2, 1e-3)
        >>> checker.check_gradient(layer, bottom, top, top_weights=[torch.randn(2, 3, 4, 5)])
    """

    def __init__(
        self,
        stepsize: float = 1e-2,
        threshold: float = 1e-3,
        kink: float = 0.0,
        kink_range: float = -1.0,
        verbose: bool = False
    ):
        self.stepsize = stepsize
        self.threshold = threshold
        self.kink = kink
        self.kink_range = kink_range
        self.verbose = verbose

    def _objective_and_gradient(
        self,
        top: Sequence[Blob],
        top_indices: Sequence[int],
        top_id: int,
        top_data_id: int,
        top_weights: Optional[Sequence[torch.Tensor]]
    ) -> float:
        """Compute the objective from the tops and write its gradient into the top diffs."""
        for blob in top:
            blob.diff.zero_()

        if top_id >= 0:
            blob = top[top_id]
            blob.diff.view(-1)[top_data_id] = 1
            return blob.data.view(-1)[top_data_id].item()

        loss = 0.0
        for k, i in enumerate(top_indices):
            blob = top[i]
            if top_weights is not None:
                weights = top_weights[k].to(dtype=blob.dtype, device=blob.device)
                loss += (blob.data * weights).sum().item()
                blob.diff.copy_(weights.view(blob.shape))
            else:
                loss += 0.5 * (blob.data * blob.data).sum().item()
                blob.diff.copy_(blob.data)
        return loss

    def check_gradient(
        self,
        layer,
        bottom: Sequence[Blob],
        top: Sequence[Blob],
        check_bottom: int = -1,
        top_id: int = -1,
        top_data_id: int = -1,
        top_indices: Optional[Sequence[int]] = None,
        top_weights: Optional[Sequence[torch.Tensor]] = None,
        setup: bool = True,
        raise_on_failure: bool = True
    ) -> GradientCheckResult:
        """
        Check the gradient of every element of the selected bottom blobs.

        Args:
            layer: Layer under test
            bottom: Input blobs
            top: Output blobs
            check_bottom: Index of the bottom blob to check (<0: all)
            top_id: If >= 0, the objective is the single element
                top[top_id][top_data_id]
            top_data_id: Flat element index used with top_id
            top_indices: Tops that enter the objective (default: all)
            top_weights: Output gradients, one per entry of top_indices; when None
                the objective is half the sum of squared outputs
            setup: Call layer.setup first
            raise_on_failure: Raise AssertionError when any element mismatches

        Returns:
            GradientCheckResult
        """
        if setup:
            layer.setup(bottom, top)
        if top_indices is None:
            top_indices = list(range(len(top)))
        if top_weights is not None and len(top_weights) != len(top_indices):
            raise ValueError(
                f"Got {len(top_weights)} top weight tensors for {len(top_indices)} checked tops"
            )

        bottom_ids = range(len(bottom)) if check_bottom < 0 else [check_bottom]

        # Analytic gradient
        layer.forward(bottom, top)
        self._objective_and_gradient(top, top_indices, top_id, top_data_id, top_weights)
        for i in bottom_ids:
            bottom[i].diff.zero_()
        layer.backward(top, [i in bottom_ids for i in range(len(bottom))], bottom)
        computed = {i: bottom[i].diff.clone().view(-1) for i in bottom_ids}

        result = GradientCheckResult()
        for i in bottom_ids:
            flat = bottom[i].data.view(-1)
            for feat_id in range(flat.numel()):
                feature = flat[feat_id].item()

                flat[feat_id] = feature + self.stepsize
                layer.forward(bottom, top)
                positive = self._objective_and_gradient(
                    top, top_indices, top_id, top_data_id, top_weights
                )

                flat[feat_id] = feature - self.stepsize
                layer.forward(bottom, top)
                negative = self._objective_and_gradient(
                    top, top_indices, top_id, top_data_id, top_weights
                )

                flat[feat_id] = feature

                if self.kink_range >= 0 and abs(feature - self.kink) <= self.kink_range:
                    continue

                estimated = (positive - negative) / self.stepsize / 2.0
                computed_value = computed[i][feat_id].item()
                scale = max(abs(computed_value), abs(estimated), 1.0)
                error = abs(computed_value - estimated)

                result.num_checked += 1
                result.max_error = max(result.max_error, error / scale)
                if error > self.threshold * scale:
                    result.mismatches.append(GradientMismatch(
                        bottom_id=i,
                        feat_id=feat_id,
                        computed=computed_value,
                        estimated=estimated,
                        top_id=top_id,
                        top_data_id=top_data_id,
                    ))

        # Leave the layer in the state of the unperturbed input
        layer.forward(bottom, top)

        if raise_on_failure and not result.passed:
            shown = '\n  '.join(str(m) for m in result.mismatches[:10])
            raise AssertionError(
                f"{len(result.mismatches)} of {result.num_checked} gradient(s) exceed "
                f"threshold {self.threshold}:\n  {shown}"
            )
        return result

    def check_gradient_exhaustive(
        self,
        layer,
        bottom: Sequence[Blob],
        top: Sequence[Blob],
        check_bottom: int = -1,
        top_indices: Optional[Sequence[int]] = None
    ) -> GradientCheckResult:
        """
        Check the gradient of every output element w.r.t. every input element.

        Runs one check_gradient per element of the selected tops, with that single
        element as the objective.
        """
        layer.setup(bottom, top)
        if top_indices is None:
            top_indices = list(range(len(top)))

        result = GradientCheckResult()
        for top_id in top_indices:
            count = top[top_id].count
            elements = range(count)
            if self.verbose:
                elements = tqdm(elements, desc=f"Checking gradients of top {top_id}")
            for top_data_id in elements:
                result.merge(self.check_gradient(
                    layer, bottom, top,
                    check_bottom=check_bottom,
                    top_id=top_id,
                    top_data_id=top_data_id,
                    setup=False,
                    raise_on_failure=False,
                ))

        if self.verbose:
            print(f"\n{'='*80}")
            print(f"Gradient check: {result.num_checked} gradients checked")
            print(f"  Max scaled error: {result.max_error:.3e} (threshold {self.threshold})")
            print(f"  Mismatches: {len(result.mismatches)}")
            print(f"{'='*80}")

        if not result.passed:
            shown = '\n  '.join(str(m) for m in result.mismatches[:10])
            raise AssertionError(
                f"{len(result.mismatches)} of {result.num_checked} gradient(s) exceed "
                f"threshold {self.threshold}:\n  {shown}"
            )
        return result
