"""
test_network.py
~~~~~~~~~~~~~~~

Unit tests for layer/network construction, the forward pass and cost.
"""

import pickle
import warnings
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from feedforward.errors import InferenceIndexError
from feedforward.mnist_loader import Dataset
from feedforward.network import Layer, Network, sigmoid, cost


@pytest.fixture
def network(small_dataset):
    """Network with layer sizes [4, 3, 3, 5]."""
    return Network(small_dataset, 2, 3, 5, seed=0)


@pytest.mark.unit
class TestLayer:
    """Tests for layer construction."""

    def test_shapes(self):
        layer = Layer(3, 2, np.random.default_rng(1))

        assert layer.node_count == 3
        assert layer.weights.shape == (3, 2)
        assert layer.biases.shape == (3,)

    def test_input_layer_has_empty_weights(self):
        layer = Layer(4, 0)

        assert layer.weights.shape == (4, 0)
        assert all(len(row) == 0 for row in layer.weights)

    def test_parameters_in_range(self):
        layer = Layer(50, 40, np.random.default_rng(2))

        assert np.all(layer.weights >= -1.0) and np.all(layer.weights < 1.0)
        assert np.all(layer.biases >= -1.0) and np.all(layer.biases < 1.0)

    def test_seeded_generator_is_reproducible(self):
        first = Layer(3, 2, np.random.default_rng(7))
        second = Layer(3, 2, np.random.default_rng(7))

        assert np.array_equal(first.weights, second.weights)
        assert np.array_equal(first.biases, second.biases)

    def test_zero_nodes_is_legal(self):
        layer = Layer(0, 3)
        assert len(layer) == 0

    def test_negative_size_rejected(self):
        with pytest.raises(ValueError):
            Layer(-1, 3)


@pytest.mark.unit
class TestNetworkConstruction:
    """Tests for the layer sequence built by Network."""

    def test_layer_sizes(self, network):
        assert network.sizes == [4, 3, 3, 5]
        assert len(network.layers) == 4

    def test_weight_widths_follow_previous_layer(self, network):
        assert network.layers[0].weights.shape == (4, 0)
        assert network.layers[1].weights.shape == (3, 4)
        assert network.layers[2].weights.shape == (3, 3)
        assert network.layers[3].weights.shape == (5, 3)

    def test_layer_count_is_hidden_plus_two(self, small_dataset):
        for hidden_layer_count in range(4):
            net = Network(small_dataset, hidden_layer_count, 6, 2)
            assert len(net.layers) == hidden_layer_count + 2
            assert net.sizes == [4] + [6] * hidden_layer_count + [2]

    def test_no_hidden_layers_wires_output_to_input(self, small_dataset):
        net = Network(small_dataset, 0, 3, 5)
        assert net.layers[1].weights.shape == (5, 4)

    def test_all_parameters_in_range(self, network):
        for layer in network.layers:
            assert np.all((layer.weights >= -1.0) & (layer.weights < 1.0))
            assert np.all((layer.biases >= -1.0) & (layer.biases < 1.0))

    def test_seed_is_reproducible(self, small_dataset):
        first = Network(small_dataset, 2, 3, 5, seed=11)
        second = Network(small_dataset, 2, 3, 5, seed=11)

        for a, b in zip(first.weights, second.weights):
            assert np.array_equal(a, b)
        assert np.array_equal(first.run(1), second.run(1))

    def test_weights_and_biases_skip_input_layer(self, network):
        assert len(network.weights) == 3
        assert len(network.biases) == 3
        assert network.weights[0].shape == (3, 4)

    def test_negative_sizes_rejected(self, small_dataset):
        with pytest.raises(ValueError):
            Network(small_dataset, -1, 3, 5)

    def test_degenerate_zero_sizes(self, small_dataset):
        net = Network(small_dataset, 2, 0, 0)

        assert net.sizes == [4, 0, 0, 0]
        assert len(net.run(0)) == 0


@pytest.mark.unit
class TestForwardPass:
    """Tests for propagate/run/feedforward."""

    def test_sigmoid_is_mirrored_logistic(self):
        assert sigmoid(np.array(0.0)) == 0.5
        assert sigmoid(np.array(2.0)) == pytest.approx(1.0 / (1.0 + np.e ** 2))
        assert sigmoid(np.array(-2.0)) > 0.5

    def test_sigmoid_saturates_without_warnings(self):
        with warnings.catch_warnings():
            warnings.simplefilter('error')
            result = sigmoid(np.array([1000.0, -1000.0]))
        assert result.tolist() == [0.0, 1.0]

    def test_output_length_and_range(self, network):
        output = network.run(2)

        assert output.shape == (5,)
        assert np.all((output >= 0.0) & (output <= 1.0))

    def test_matches_manual_computation(self, network, small_dataset):
        activation = small_dataset.images[3] / 255.0
        for weights, biases in zip(network.weights, network.biases):
            activation = 1.0 / (1.0 + np.exp(weights @ activation + biases))

        assert np.allclose(network.run(3), activation)

    def test_input_layer_is_normalized_pixels(self, network):
        activations = network.propagate(1)
        assert np.allclose(activations[0], np.array([4, 5, 6, 7]) / 255.0)

    def test_buffer_has_one_array_per_layer(self, network):
        activations = network.propagate(0)
        assert [len(a) for a in activations] == network.sizes

    def test_blank_image_gives_sigmoid_of_bias(self, blank_dataset):
        net = Network(blank_dataset, 2, 3, 5, seed=3)
        activations = net.propagate(0)

        assert np.allclose(activations[1], sigmoid(net.layers[1].biases))

    def test_blank_image_output_without_hidden_layers(self, blank_dataset):
        net = Network(blank_dataset, 0, 3, 5, seed=3)
        assert np.allclose(net.run(1), sigmoid(net.layers[1].biases))

    def test_image_index_out_of_range(self, network):
        with pytest.raises(InferenceIndexError) as exc_info:
            network.run(4)
        assert exc_info.value.kind == 'image'

    def test_negative_image_index(self, network):
        with pytest.raises(IndexError):
            network.run(-1)

    def test_short_pixel_vector(self, network):
        with pytest.raises(InferenceIndexError) as exc_info:
            network.feedforward([0, 0, 0])
        assert exc_info.value.kind == 'pixel'

    def test_feedforward_matches_run(self, network, small_dataset):
        assert np.array_equal(
            network.feedforward(small_dataset.images[2]), network.run(2)
        )

    def test_run_leaves_parameters_untouched(self, network):
        before = [w.copy() for w in network.weights]
        network.run(0)
        network.run(1)
        for original, current in zip(before, network.weights):
            assert np.array_equal(original, current)

    def test_concurrent_runs_agree_with_sequential(self, network):
        expected = [network.run(i) for i in range(4)]

        with ThreadPoolExecutor(max_workers=4) as executor:
            results = list(executor.map(network.run, [0, 1, 2, 3] * 5))

        for i, result in enumerate(results):
            assert np.array_equal(result, expected[i % 4])


@pytest.mark.unit
class TestCost:
    """Tests for the error vector against a one-hot target."""

    def test_cost_vector(self, network):
        output = network.run(0)
        error = network.cost(2, output)

        assert error.shape == (5,)
        assert error[2] == pytest.approx(1.0 - output[2])
        for i in (0, 1, 3, 4):
            assert error[i] == pytest.approx(0.0 - output[i])

    def test_answer_out_of_range(self, network):
        output = network.run(0)
        with pytest.raises(InferenceIndexError) as exc_info:
            network.cost(5, output)
        assert exc_info.value.kind == 'answer'
        assert exc_info.value.limit == 5

    def test_module_level_cost(self):
        error = cost(1, np.array([0.25, 0.5, 0.75]))
        assert error.tolist() == [-0.25, 0.5, -0.75]


@pytest.mark.unit
class TestEvaluation:
    """Tests for predict/evaluate."""

    def test_predict_is_argmax(self, network):
        assert network.predict(1) == int(np.argmax(network.run(1)))

    def test_evaluate_counts_matches(self, network, small_dataset):
        expected = sum(
            network.predict(i) == small_dataset.label(i) for i in range(4)
        )
        assert network.evaluate() == expected
        assert 0 <= network.evaluate([0, 1]) <= 2

    def test_evaluate_requires_labels(self):
        dataset = Dataset([[0, 0, 0, 0]], [], (2, 2))
        net = Network(dataset, 1, 2, 2)

        with pytest.raises(InferenceIndexError):
            net.evaluate()

    def test_no_output_nodes_predicts_nothing(self):
        dataset = Dataset([[0, 0, 0, 0], [9, 9, 9, 9]], [0, 1], (2, 2))
        net = Network(dataset, 1, 3, 0)

        assert net.predict(0) is None
        assert net.evaluate() == 0


@pytest.mark.unit
class TestDatasetBinding:
    """Tests for pickling and re-attaching datasets."""

    def test_pickle_drops_dataset(self, network):
        restored = pickle.loads(pickle.dumps(network))

        assert restored.dataset is None
        assert restored.sizes == network.sizes
        for a, b in zip(restored.weights, network.weights):
            assert np.array_equal(a, b)

    def test_pickle_keeps_original_dataset(self, network, small_dataset):
        pickle.dumps(network)
        assert network.dataset is small_dataset

    def test_run_without_dataset(self, network):
        restored = pickle.loads(pickle.dumps(network))
        with pytest.raises(RuntimeError):
            restored.run(0)

    def test_attach_dataset(self, network, small_dataset):
        restored = pickle.loads(pickle.dumps(network))
        restored.attach_dataset(small_dataset)

        assert np.array_equal(restored.run(0), network.run(0))

    def test_attach_dataset_with_wrong_geometry(self, network):
        other = Dataset([[0] * 9], [0], (3, 3))
        with pytest.raises(ValueError):
            network.attach_dataset(other)
