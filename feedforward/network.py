"""
network.py
~~~~~~~~~~

A feed-forward neural network evaluated over an MNIST Dataset.

The network is a list of layers: an input layer that only stages the
normalized pixels, a configurable number of hidden layers, and an output
layer. Each non-input layer holds one weight row and one bias per node.

Activations are never stored on the network. Every pass builds its own
activation buffer (one array per layer), so the same Network can be
evaluated from several threads at once without locking. There is no
training here: ``cost`` only computes the error vector a training loop
would start from.
"""

import logging
from typing import Iterable, List, Optional

import numpy as np

from feedforward.errors import InferenceIndexError
from feedforward.mnist_loader import Dataset

logger = logging.getLogger(__name__)


def sigmoid(z: np.ndarray) -> np.ndarray:
    """
    The activation function, 1 / (1 + e^z).

    Note the sign: this is the mirror image of the usual logistic
    function 1 / (1 + e^-z), kept as-is so outputs match the networks
    this package has always produced.
    """
    # e^z overflows to inf for large z, which correctly yields 0.0
    with np.errstate(over='ignore'):
        return 1.0 / (1.0 + np.exp(z))


def cost(answer_index: int, output: np.ndarray) -> np.ndarray:
    """
    Return the error vector ``one_hot(answer_index) - output``.

    Args:
        answer_index: Index of the correct class
        output: Output-layer activations from a forward pass

    Raises:
        InferenceIndexError: If answer_index is not a valid output position
    """
    output = np.asarray(output, dtype=np.float64)
    if not 0 <= answer_index < len(output):
        raise InferenceIndexError('answer', answer_index, len(output))

    target = np.zeros(len(output))
    target[answer_index] = 1.0
    return target - output


class Layer:
    """
    One layer of nodes.

    Row ``i`` of ``weights`` and entry ``i`` of ``biases`` belong to node
    ``i``. The weight row has one entry per node of the previous layer.
    """

    def __init__(
        self,
        node_count: int,
        previous_node_count: int,
        rng: Optional[np.random.Generator] = None
    ):
        """
        Create a layer with weights and biases drawn uniformly from [-1.0, 1.0).

        Args:
            node_count: Number of nodes in this layer
            previous_node_count: Number of nodes in the layer feeding this
                one (0 for the input layer)
            rng: Random generator to draw from; a fresh unseeded one if None

        Raises:
            ValueError: If either count is negative
        """
        if node_count < 0 or previous_node_count < 0:
            raise ValueError(
                f"Layer sizes must be non-negative, got "
                f"node_count={node_count}, previous_node_count={previous_node_count}"
            )
        if rng is None:
            rng = np.random.default_rng()

        self.node_count = node_count
        self.previous_node_count = previous_node_count
        self.weights = rng.uniform(-1.0, 1.0, size=(node_count, previous_node_count))
        self.biases = rng.uniform(-1.0, 1.0, size=node_count)

    def activate(self, previous: np.ndarray) -> np.ndarray:
        """Compute this layer's activations from the previous layer's."""
        return sigmoid(self.weights @ previous + self.biases)

    def __len__(self) -> int:
        return self.node_count

    def __repr__(self) -> str:
        return f"Layer(node_count={self.node_count}, previous_node_count={self.previous_node_count})"


class Network:
    """
    Input layer, hidden layers and output layer, built from a Dataset's geometry.

    Example:
        >>> dataset = load_test_data()
        >>> net = Network(dataset, hidden_layer_count=2,
        ...               hidden_node_count=16, output_node_count=10, seed=1)
        >>> output = net.run(0)
        >>> error = net.cost(dataset.label(0), output)
    """

    def __init__(
        self,
        dataset: Dataset,
        hidden_layer_count: int,
        hidden_node_count: int,
        output_node_count: int,
        rng: Optional[np.random.Generator] = None,
        seed: Optional[int] = None
    ):
        """
        Args:
            dataset: Dataset whose images the network evaluates; only its
                pixel_count shapes the network
            hidden_layer_count: Number of hidden layers (may be 0)
            hidden_node_count: Nodes per hidden layer
            output_node_count: Nodes in the output layer
            rng: Random generator for weights and biases
            seed: Seed for a new generator when rng is not given

        Raises:
            ValueError: If a size parameter is negative
        """
        if min(hidden_layer_count, hidden_node_count, output_node_count) < 0:
            raise ValueError(
                "Network sizes must be non-negative, got "
                f"hidden_layer_count={hidden_layer_count}, "
                f"hidden_node_count={hidden_node_count}, "
                f"output_node_count={output_node_count}"
            )
        if rng is None:
            rng = np.random.default_rng(seed)

        self.dataset = dataset
        self.hidden_layer_count = hidden_layer_count
        self.hidden_node_count = hidden_node_count
        self.output_node_count = output_node_count

        # The input layer has no incoming weights; it only stages pixels.
        # Every later layer is as wide as the one before it.
        self.layers: List[Layer] = [Layer(dataset.pixel_count, 0, rng)]
        for _ in range(hidden_layer_count):
            self.layers.append(
                Layer(hidden_node_count, self.layers[-1].node_count, rng)
            )
        self.layers.append(
            Layer(output_node_count, self.layers[-1].node_count, rng)
        )

        logger.debug(f"Created network with layer sizes {self.sizes}")

    @property
    def sizes(self) -> List[int]:
        """Node count of every layer, input first."""
        return [layer.node_count for layer in self.layers]

    @property
    def pixel_count(self) -> int:
        return self.layers[0].node_count

    @property
    def weights(self) -> List[np.ndarray]:
        """Weight matrices of the computing (non-input) layers."""
        return [layer.weights for layer in self.layers[1:]]

    @property
    def biases(self) -> List[np.ndarray]:
        """Bias vectors of the computing (non-input) layers."""
        return [layer.biases for layer in self.layers[1:]]

    def attach_dataset(self, dataset: Dataset) -> None:
        """
        Point the network at a (new) dataset of the same image geometry.

        Raises:
            ValueError: If the dataset's pixel_count differs from the input layer
        """
        if dataset.pixel_count != self.pixel_count:
            raise ValueError(
                f"Dataset has {dataset.pixel_count} pixels per image, "
                f"network expects {self.pixel_count}"
            )
        self.dataset = dataset

    def _require_dataset(self) -> Dataset:
        if self.dataset is None:
            raise RuntimeError("Network has no dataset attached")
        return self.dataset

    def feedforward_layers(self, pixels) -> List[np.ndarray]:
        """
        Run a forward pass over raw pixel bytes.

        Args:
            pixels: Sequence of pixel values in [0, 255], one per input node

        Returns:
            A new activation buffer: one array per layer, input first

        Raises:
            InferenceIndexError: If pixels is shorter than the input layer
        """
        pixels = np.asarray(pixels)
        if len(pixels) < self.pixel_count:
            raise InferenceIndexError('pixel', len(pixels), self.pixel_count)

        # Map bytes 0-255 onto 0.0-1.0
        activations = [pixels[:self.pixel_count].astype(np.float64) / 255.0]
        for layer in self.layers[1:]:
            activations.append(layer.activate(activations[-1]))
        return activations

    def feedforward(self, pixels) -> np.ndarray:
        """Return the output activations for raw pixel bytes."""
        return self.feedforward_layers(pixels)[-1]

    def propagate(self, image_index: int) -> List[np.ndarray]:
        """
        Run a forward pass over one image of the attached dataset.

        Returns:
            A new activation buffer: one array per layer, input first

        Raises:
            InferenceIndexError: If image_index is out of range
        """
        image = self._require_dataset().image(image_index)
        return self.feedforward_layers(image)

    def run(self, image_index: int) -> np.ndarray:
        """
        Return the output-layer activations for one image.

        The values lie in [0, 1] but are not normalized into a
        probability distribution.
        """
        return self.propagate(image_index)[-1]

    def cost(self, answer_index: int, output: np.ndarray) -> np.ndarray:
        """
        Error vector of an output from ``run`` against a one-hot target.

        Raises:
            InferenceIndexError: If answer_index >= output_node_count
        """
        if not 0 <= answer_index < self.output_node_count:
            raise InferenceIndexError('answer', answer_index, self.output_node_count)
        return cost(answer_index, output)

    def predict(self, image_index: int) -> Optional[int]:
        """
        Return the class with the largest output activation.

        A network with no output nodes predicts nothing and returns None.
        """
        output = self.run(image_index)
        if len(output) == 0:
            return None
        return int(np.argmax(output))

    def evaluate(self, indices: Optional[Iterable[int]] = None) -> int:
        """
        Count the images whose prediction matches their label.

        Args:
            indices: Image indices to check; every image if None

        Raises:
            InferenceIndexError: If an image or its label is missing
        """
        dataset = self._require_dataset()
        if indices is None:
            indices = range(len(dataset))

        correct = 0
        for index in indices:
            if self.predict(index) == dataset.label(index):
                correct += 1
        return correct

    def __getstate__(self):
        # Datasets are large and reloadable; persist only the parameters
        state = self.__dict__.copy()
        state['dataset'] = None
        return state

    def __repr__(self) -> str:
        return f"Network(sizes={self.sizes})"
