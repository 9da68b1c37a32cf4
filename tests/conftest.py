"""
conftest.py
~~~~~~~~~~~

Shared fixtures: small in-memory datasets and synthetic IDX files.
"""

import gzip
import struct

import pytest

from feedforward.mnist_loader import Dataset


def idx_images(images, rows, cols, magic=2051, count=None):
    """Build the bytes of an IDX image file."""
    count = len(images) if count is None else count
    header = struct.pack('>iiii', magic, count, rows, cols)
    return header + b''.join(bytes(image) for image in images)


def idx_labels(labels, magic=2049, count=None):
    """Build the bytes of an IDX label file."""
    count = len(labels) if count is None else count
    return struct.pack('>ii', magic, count) + bytes(labels)


def write_file(path, data, compress=False):
    if compress:
        with gzip.open(str(path), 'wb') as f:
            f.write(data)
    else:
        path.write_bytes(data)
    return str(path)


@pytest.fixture
def small_dataset():
    """Four 2x2 images with labels 0-3."""
    return Dataset(
        [[0, 1, 2, 3], [4, 5, 6, 7], [8, 9, 10, 11], [12, 13, 14, 15]],
        [0, 1, 2, 3],
        (2, 2)
    )


@pytest.fixture
def blank_dataset():
    """Two all-zero 2x2 images."""
    return Dataset([[0, 0, 0, 0], [0, 0, 0, 0]], [0, 1], (2, 2))


@pytest.fixture
def sample_images():
    """Three 2x3 images."""
    return [
        [0, 10, 20, 30, 40, 50],
        [255, 254, 253, 252, 251, 250],
        [1, 2, 3, 4, 5, 6],
    ]


@pytest.fixture
def idx_files(tmp_path, sample_images):
    """A well-formed image/label file pair. Returns (images_path, labels_path)."""
    images_path = write_file(
        tmp_path / 'images-idx3-ubyte', idx_images(sample_images, 2, 3)
    )
    labels_path = write_file(
        tmp_path / 'labels-idx1-ubyte', idx_labels([7, 2, 1])
    )
    return images_path, labels_path
