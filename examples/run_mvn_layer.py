"""
Example script running the MVN layer forward and backward.

This script demonstrates how to:
1. Load the layer definition from YAML
2. Create the layer through the registry
3. Run forward and read the bound mean/variance blobs
4. Run backward and check the gradient against finite differences

Usage:
    python examples/run_mvn_layer.py --config config/mvn_layer.yml --shape 2 3 4 5
"""

import sys
from pathlib import Path
import argparse

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import torch
from mvn_norm import (
    Blob,
    BlobFinder,
    GaussianFiller,
    GradientChecker,
    create_layer,
    load_layer_param,
)


def main():
    parser = argparse.ArgumentParser(
        description='Run the MVN layer on random data'
    )
    parser.add_argument(
        '--config',
        type=str,
        default=str(Path(__file__).parent.parent / 'config' / 'mvn_layer.yml'),
        help='Path to the layer configuration file'
    )
    parser.add_argument(
        '--shape',
        type=int,
        nargs='+',
        default=[2, 3, 4, 5],
        help='Input shape (N C H W)'
    )
    parser.add_argument(
        '--seed',
        type=int,
        default=1701,
        help='Random seed'
    )
    parser.add_argument(
        '--check-gradient',
        action='store_true',
        help='Run a finite-difference gradient check (double precision)'
    )

    args = parser.parse_args()
    torch.manual_seed(args.seed)

    layer_param = load_layer_param(args.config, section='layer')

    print("=" * 80)
    print(f"MVN layer: {layer_param.name}")
    print("=" * 80)

    dtype = torch.float64 if args.check_gradient else torch.float32
    bottom = [Blob(*args.shape, dtype=dtype)]
    GaussianFiller(mean=3.0, std=2.0).fill(bottom[0])

    # One top per name in the layer definition, registered by name
    finder = BlobFinder()
    top_names = layer_param.top or ['normalized']
    top = []
    for name in top_names:
        blob = Blob(dtype=dtype)
        finder.add_blob(name, blob)
        top.append(blob)

    layer = create_layer(layer_param, verbose=True)
    layer.setup(bottom, top, finder)
    layer.forward(bottom, top)

    output = finder.pointer_from_name(top_names[0])
    geometry = layer.geometry
    groups = output.data.reshape(geometry.num, geometry.dim)
    print(f"\nOutput shape: {output.shape}")
    print(f"  Per-group mean (max |.|):        {groups.mean(dim=1).abs().max().item():.3e}")
    print(f"  Per-group variance (max |.-1|):  {(groups.var(dim=1, unbiased=False) - 1).abs().max().item():.3e}")

    for name in ('mean', 'variance'):
        blob_name = getattr(layer_param.mvn_param, f"{name}_blob")
        if blob_name is not None:
            blob = finder.pointer_from_name(blob_name)
            print(f"\n{name} blob '{blob_name}' {blob.shape}:")
            print(f"  first values: {blob.data.reshape(-1)[:5].tolist()}")

    output.diff.copy_(torch.randn(output.shape, dtype=dtype))
    layer.backward(top, [True], bottom)
    print(f"\nInput gradient norm: {bottom[0].diff.norm().item():.6f}")

    if args.check_gradient:
        checker = GradientChecker(1e-2, 1e-3, verbose=True)
        weights = [torch.randn(output.shape, dtype=dtype)]
        result = checker.check_gradient(
            layer, bottom, top,
            top_indices=[top.index(output)],
            top_weights=weights,
            setup=False,
        )
        print(f"\n✓ Gradient check passed ({result.num_checked} gradients, "
              f"max scaled error {result.max_error:.3e})")

    print("\n" + "=" * 80)
    print("Complete!")
    print("=" * 80)


if __name__ == "__main__":
    main()
