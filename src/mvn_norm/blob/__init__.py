"""Blob container, name lookup and fillers."""

from .blob import Blob, BlobStorage
from .blob_finder import BlobFinder
from .fillers import GaussianFiller, ConstantFiller

__all__ = [
    'Blob',
    'BlobStorage',
    'BlobFinder',
    'GaussianFiller',
    'ConstantFiller',
]
