"""
mnist_loader.py
~~~~~~~~~~~~~~~

Loader for the MNIST image and label files in IDX format.

IDX is a big-endian binary layout: a header of 32-bit integers (a magic
number, the item count, and the size of each remaining dimension) followed
by the raw payload bytes. According to http://yann.lecun.com/exdb/mnist/:

Image file::

    [offset] [type]          [value]          [description]
    0000     32 bit integer  0x00000803(2051) magic number
    0004     32 bit integer  60000            number of images
    0008     32 bit integer  28               number of rows
    0012     32 bit integer  28               number of columns
    0016     unsigned byte   ??               pixel
    ........

Label file::

    [offset] [type]          [value]          [description]
    0000     32 bit integer  0x00000801(2049) magic number (MSB first)
    0004     32 bit integer  60000            number of items
    0008     unsigned byte   ??               label
    ........

Files ending in ``.gz`` are decompressed on the fly.
"""

import os
import gzip
import struct
import logging
from typing import Optional, Tuple

import numpy as np

from feedforward import config
from feedforward.errors import (
    FormatError,
    TruncatedDataError,
    DataIOError,
    InferenceIndexError
)

logger = logging.getLogger(__name__)

IMAGE_MAGIC = 2051
LABEL_MAGIC = 2049

TEST_IMAGES = 't10k-images-idx3-ubyte'
TEST_LABELS = 't10k-labels-idx1-ubyte'
TRAINING_IMAGES = 'train-images-idx3-ubyte'
TRAINING_LABELS = 'train-labels-idx1-ubyte'

# Headers can declare far more data than a file holds
READ_CHUNK_SIZE = 1 << 20


class Dataset:
    """
    Immutable collection of images, labels and their geometry.

    Images are stored as a read-only uint8 array of shape
    (count, rows * cols), one flattened image per row. Labels are a
    read-only uint8 array with one class per image.
    """

    def __init__(
        self,
        images,
        labels,
        dimensions: Tuple[int, int]
    ):
        """
        Args:
            images: Array-like of shape (count, rows * cols) or (count, rows, cols)
            labels: Array-like of class labels (may be empty)
            dimensions: (rows, cols) of every image
        """
        rows, cols = (int(d) for d in dimensions)
        pixel_count = rows * cols

        images = np.asarray(images, dtype=np.uint8)
        images = images.reshape(len(images), pixel_count)
        labels = np.asarray(labels, dtype=np.uint8).reshape(-1)

        self._dimensions = (rows, cols)
        self._pixel_count = pixel_count
        self._images = _read_only(images)
        self._labels = _read_only(labels)

    @property
    def dimensions(self) -> Tuple[int, int]:
        return self._dimensions

    @property
    def pixel_count(self) -> int:
        return self._pixel_count

    @property
    def images(self) -> np.ndarray:
        return self._images

    @property
    def labels(self) -> np.ndarray:
        return self._labels

    def image(self, index: int) -> np.ndarray:
        """Return the raw bytes of one image, raising InferenceIndexError if out of range."""
        if not 0 <= index < len(self._images):
            raise InferenceIndexError('image', index, len(self._images))
        return self._images[index]

    def label(self, index: int) -> int:
        """Return the label of one image, raising InferenceIndexError if out of range."""
        if not 0 <= index < len(self._labels):
            raise InferenceIndexError('label', index, len(self._labels))
        return int(self._labels[index])

    def __len__(self) -> int:
        return len(self._images)

    def __getitem__(self, index: int) -> Tuple[np.ndarray, int]:
        return self.image(index), self.label(index)

    def __repr__(self) -> str:
        rows, cols = self._dimensions
        return (
            f"Dataset(images={len(self._images)}, labels={len(self._labels)}, "
            f"dimensions={rows}x{cols})"
        )


def _read_only(array: np.ndarray) -> np.ndarray:
    if array.flags.writeable:
        array = array.copy()
        array.flags.writeable = False
    return array


def _read_payload(f, size: int) -> bytes:
    """Read up to size bytes in bounded chunks, stopping early at end of file."""
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = f.read(min(remaining, READ_CHUNK_SIZE))
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b''.join(chunks)


def _open(path: str):
    if path.endswith('.gz'):
        return gzip.open(path, 'rb')
    return open(path, 'rb')


def read_idx(
    path: str,
    expected_magic: int,
    dimension_count: int,
    exact_length: bool = False
) -> Tuple[Tuple[int, ...], np.ndarray]:
    """
    Read an IDX file: a big-endian header, then the declared payload bytes.

    Args:
        path: Path to the IDX file (optionally gzipped)
        expected_magic: Magic number the header must carry
        dimension_count: Number of dimensions, including the item count
            (1 for labels, 3 for images)
        exact_length: Require the remaining file length to match the
            declared payload exactly. Otherwise trailing bytes are ignored.

    Returns:
        (dimensions, payload) where dimensions is (count, *item_shape) and
        payload is a read-only uint8 array of that shape

    Raises:
        FormatError: If the magic number or a dimension is invalid
        TruncatedDataError: If the header or payload is shorter than declared
        DataIOError: If the file cannot be opened or read
    """
    header_size = 4 * (1 + dimension_count)

    try:
        with _open(path) as f:
            header = f.read(header_size)
            if len(header) < header_size:
                raise TruncatedDataError(header_size, len(header), path)

            magic, *dimensions = struct.unpack(
                f'>{1 + dimension_count}i', header
            )
            if magic != expected_magic:
                raise FormatError('magic number', expected_magic, magic, path)

            for position, value in enumerate(dimensions):
                if value < 0:
                    raise FormatError(
                        f'dimension {position}', 'a non-negative size', value, path
                    )

            count, item_shape = dimensions[0], dimensions[1:]
            item_size = 1
            for value in item_shape:
                item_size *= value
            expected = count * item_size

            logger.debug(
                f"IDX header for '{path}': magic={magic}, "
                f"dimensions={dimensions}"
            )

            payload = _read_payload(f, expected)
            trailing = len(f.read()) if exact_length else 0
    except (OSError, EOFError) as e:
        reason = getattr(e, 'strerror', None) or str(e) or type(e).__name__
        raise DataIOError(path, reason) from e

    if trailing:
        raise TruncatedDataError(expected, len(payload) + trailing, path)

    if len(payload) < expected:
        # Report the first item that came up short
        raise TruncatedDataError(
            expected, len(payload), path,
            item_index=len(payload) // item_size
        )

    data = np.frombuffer(payload[:expected], dtype=np.uint8)
    return tuple(dimensions), data.reshape(tuple(dimensions))


def read_images(path: str) -> Tuple[Tuple[int, int], np.ndarray]:
    """
    Read an IDX image file.

    Returns:
        ((rows, cols), images) with images shaped (count, rows * cols)
    """
    (count, rows, cols), images = read_idx(path, IMAGE_MAGIC, 3)
    return (rows, cols), images.reshape(count, rows * cols)


def read_labels(path: str) -> np.ndarray:
    """
    Read an IDX label file.

    The bytes after the header must number exactly the declared count.
    """
    _, labels = read_idx(path, LABEL_MAGIC, 1, exact_length=True)
    return labels


def load_data(images_path: str, labels_path: str) -> Dataset:
    """
    Load an image file and its label file into one Dataset.

    Raises:
        FormatError: If the files disagree on the number of items, or
            either header is invalid
        TruncatedDataError: If either file is shorter than declared
        DataIOError: If either file cannot be read
    """
    labels = read_labels(labels_path)
    dimensions, images = read_images(images_path)

    if len(images) != len(labels):
        raise FormatError('item count', len(images), len(labels), labels_path)

    dataset = Dataset(images, labels, dimensions)
    logger.info(
        f"Loaded {len(dataset)} images ({dimensions[0]}x{dimensions[1]}) "
        f"from '{images_path}'"
    )
    return dataset


def _resolve(data_dir: str, name: str) -> str:
    """Prefer the raw file, fall back to its gzipped sibling."""
    path = os.path.join(data_dir, name)
    if not os.path.exists(path) and os.path.exists(path + '.gz'):
        return path + '.gz'
    return path


def load_test_data(data_dir: Optional[str] = None) -> Dataset:
    """Load the 10,000-item test split from data_dir (default: MNIST_DATA_DIR)."""
    data_dir = data_dir or config.data_dir()
    return load_data(
        _resolve(data_dir, TEST_IMAGES),
        _resolve(data_dir, TEST_LABELS)
    )


def load_training_data(data_dir: Optional[str] = None) -> Dataset:
    """Load the 60,000-item training split from data_dir (default: MNIST_DATA_DIR)."""
    data_dir = data_dir or config.data_dir()
    return load_data(
        _resolve(data_dir, TRAINING_IMAGES),
        _resolve(data_dir, TRAINING_LABELS)
    )
