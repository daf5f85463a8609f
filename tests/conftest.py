"""
Shared fixtures for the MVN tests.
"""

import sys
from pathlib import Path

import pytest
import torch

# Add src directory to path
current_file = Path(__file__)
tests_dir = current_file.parent
project_root = tests_dir.parent
src_dir = project_root / 'src'
sys.path.insert(0, str(src_dir))

from mvn_norm import Blob, GaussianFiller


@pytest.fixture
def project_root_dir() -> Path:
    return project_root


@pytest.fixture
def bottom_blob() -> Blob:
    """(2, 3, 4, 5) float32 input filled from N(0, 1)."""
    torch.manual_seed(1701)
    blob = Blob(2, 3, 4, 5)
    GaussianFiller().fill(blob)
    return blob


@pytest.fixture
def bottom_blob_double() -> Blob:
    """(2, 3, 4, 5) float64 input filled from N(0, 1), for gradient checks."""
    torch.manual_seed(1701)
    blob = Blob(2, 3, 4, 5, dtype=torch.float64)
    GaussianFiller().fill(blob)
    return blob
