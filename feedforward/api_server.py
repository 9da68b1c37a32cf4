"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API for running feed-forward networks over MNIST.

This module provides endpoints for:
- Creating and managing networks
- Running a network over one test image (output, prediction, cost)
- Measuring accuracy over the test split
- Rendering test images as PNGs
- Persisting networks to/from the SQLite database

The test split is loaded lazily on first use from MNIST_DATA_DIR.
"""

import sys
import uuid
import base64
import logging
from io import BytesIO
from typing import Dict, Any, List, Optional

import numpy as np
from flask import Flask, request, jsonify
from flask_cors import CORS

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from feedforward import config
from feedforward.errors import DatasetError, InferenceIndexError
from feedforward.mnist_loader import Dataset, load_test_data
from feedforward.network import Network
from feedforward.model_persistence import (
    save_network,
    load_network,
    list_saved_networks,
    delete_network,
    delete_old_networks
)

config.configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# MNIST test split - loaded once, on first use
test_data: Optional[Dataset] = None


# ============================================================================
# DATA LOADING
# ============================================================================

def get_test_data() -> Dataset:
    """
    Return the test split, loading it on first call.

    Raises:
        DatasetError: If the IDX files are missing or malformed
    """
    global test_data

    if test_data is None:
        logger.info("Loading MNIST test data...")
        test_data = load_test_data()
    return test_data


def reload_saved_networks() -> None:
    """
    Reload all saved networks from the database into memory.

    Called at startup so networks saved before a restart are available
    again.
    """
    saved_networks = list_saved_networks()

    if not saved_networks:
        logger.info("No saved networks to reload")
        return

    dataset = get_test_data()
    loaded_count = 0
    for net_info in saved_networks:
        network_id = net_info['network_id']
        net = load_network(network_id, dataset=dataset)
        if net is None:
            logger.warning(f"Failed to load network {network_id}")
            continue

        active_networks[network_id] = {
            'network': net,
            'architecture': net_info['architecture'],
            'accuracy': net_info['accuracy'],
            'saved': True
        }
        loaded_count += 1

    logger.info(f"Reloaded {loaded_count} network(s) from database")


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.errorhandler(DatasetError)
def handle_dataset_error(e: DatasetError):
    """The MNIST files could not be loaded."""
    logger.error(f"Test data unavailable: {e}")
    return jsonify({'error': f'Test data not available: {e}'}), 503


@app.errorhandler(InferenceIndexError)
def handle_index_error(e: InferenceIndexError):
    return jsonify({'error': str(e)}), 400


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def array_to_float_list(array: np.ndarray) -> List[float]:
    """Convert a numpy array to a list of floats (for JSON serialization)."""
    return [float(val) for val in np.ravel(array)]


def is_count(value: Any) -> bool:
    """True for non-negative integers (bools excluded)."""
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def create_digit_image(
    image_data: np.ndarray,
    dimensions,
    predicted: int,
    actual: Optional[int]
) -> str:
    """
    Create a base64-encoded PNG image of a digit.

    Args:
        image_data: Flattened image bytes
        dimensions: (rows, cols) of the image
        predicted: The class the network predicted
        actual: The labelled class, if known

    Returns:
        Base64-encoded PNG image string
    """
    fig = plt.figure(figsize=(3, 3))
    plt.imshow(np.asarray(image_data).reshape(dimensions), cmap='gray')
    plt.title(f"Predicted: {predicted} | Actual: {actual}")
    plt.axis('off')

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    fig.savefig(buffer, format='png', bbox_inches='tight')
    plt.close(fig)

    return base64.b64encode(buffer.getvalue()).decode('utf-8')


def _label_or_none(dataset: Dataset, index: int) -> Optional[int]:
    if index < len(dataset.labels):
        return dataset.label(index)
    return None


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """Return server status and statistics."""
    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'test_data_loaded': test_data is not None
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new network sized for the test images.

    Request body (all optional, defaults from the environment):
        {
            'hidden_layer_count': 2,
            'hidden_node_count': 16,
            'output_node_count': 10,
            'seed': 42
        }

    Returns:
        JSON with network_id, architecture, and status
    """
    data = request.get_json(silent=True) or {}
    params = config.default_architecture()
    for key in params:
        if key in data:
            params[key] = data[key]

    invalid = [key for key, value in params.items() if not is_count(value)]
    if invalid:
        logger.warning(f"Invalid network parameters requested: {params}")
        return jsonify({
            'error': f'{", ".join(invalid)} must be non-negative integers'
        }), 400

    seed = data.get('seed')
    if seed is not None and not is_count(seed):
        return jsonify({'error': 'seed must be a non-negative integer'}), 400

    net = Network(get_test_data(), seed=seed, **params)
    network_id = str(uuid.uuid4())

    active_networks[network_id] = {
        'network': net,
        'architecture': net.sizes,
        'accuracy': None,
        'saved': False
    }

    logger.info(f"Created network {network_id} with architecture {net.sizes}")

    return jsonify({
        'network_id': network_id,
        'architecture': net.sizes,
        'status': 'created'
    }), 201


@app.route('/api/networks/<network_id>/run', methods=['POST'])
def run_network(network_id: str):
    """
    Run a network over one test image.

    Request body:
        {'image_index': 0, 'answer_index': 7}

    answer_index defaults to the image's label when the network has an
    output node for it. Otherwise no cost is computed.

    Returns:
        JSON with the output activations, predicted and actual digit, and
        the cost vector against answer_index
    """
    if network_id not in active_networks:
        logger.warning(f"Run requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    image_index = data.get('image_index', 0)
    if not is_count(image_index):
        return jsonify({'error': 'image_index must be a non-negative integer'}), 400

    net = active_networks[network_id]['network']
    output = net.run(image_index)
    actual_digit = _label_or_none(net.dataset, image_index)

    if 'answer_index' in data:
        answer_index = data['answer_index']
    elif actual_digit is not None and actual_digit < net.output_node_count:
        answer_index = actual_digit
    else:
        answer_index = None
    if answer_index is not None and not is_count(answer_index):
        return jsonify({'error': 'answer_index must be a non-negative integer'}), 400

    response = {
        'network_id': network_id,
        'image_index': image_index,
        'predicted_digit': int(np.argmax(output)) if len(output) else None,
        'actual_digit': actual_digit,
        'network_output': array_to_float_list(output),
        'cost': None
    }
    if answer_index is not None:
        response['cost'] = array_to_float_list(net.cost(answer_index, output))

    return jsonify(response), 200


@app.route('/api/networks/<network_id>/evaluate', methods=['POST'])
def evaluate_network(network_id: str):
    """
    Measure accuracy over the test split and persist the network.

    Request body (optional):
        {'limit': 1000}  # defaults to the whole split

    Returns:
        JSON with correct, total, and accuracy
    """
    if network_id not in active_networks:
        logger.warning(f"Evaluation requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    data = request.get_json(silent=True) or {}
    net = active_networks[network_id]['network']
    total = len(net.dataset)

    limit = data.get('limit')
    if limit is not None:
        if not is_count(limit):
            return jsonify({'error': 'limit must be a non-negative integer'}), 400
        total = min(total, limit)

    correct = net.evaluate(range(total))
    accuracy = correct / total if total else None

    active_networks[network_id]['accuracy'] = accuracy
    active_networks[network_id]['saved'] = save_network(
        net, network_id, accuracy=accuracy
    )

    logger.info(f"Evaluated network {network_id}: {correct}/{total} correct")

    return jsonify({
        'network_id': network_id,
        'correct': correct,
        'total': total,
        'accuracy': accuracy
    }), 200


@app.route('/api/networks/<network_id>/images/<int:image_index>', methods=['GET'])
def get_image(network_id: str, image_index: int):
    """
    Render one test image with the network's prediction.

    Returns JSON with a base64 PNG, prediction details, and network output.
    """
    if network_id not in active_networks:
        logger.warning(f"Image requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404

    net = active_networks[network_id]['network']
    dataset = net.dataset

    output = net.run(image_index)
    predicted_digit = int(np.argmax(output)) if len(output) else None
    actual_digit = _label_or_none(dataset, image_index)

    return jsonify({
        'network_id': network_id,
        'image_index': image_index,
        'predicted_digit': predicted_digit,
        'actual_digit': actual_digit,
        'image_data': create_digit_image(
            dataset.image(image_index), dataset.dimensions,
            predicted_digit, actual_digit
        ),
        'network_output': array_to_float_list(output)
    }), 200


def _describe(network_id: str, info: Dict[str, Any]) -> Dict[str, Any]:
    net = info['network']
    return {
        'network_id': network_id,
        'sizes': net.sizes,
        'accuracy': info['accuracy'],
        'dataset_attached': net.dataset is not None,
        'saved': info['saved'],
        'source': 'memory'
    }


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """
    Describe every known network.

    Networks held in memory come first. Networks that exist only in the
    database follow, with ``dataset_attached`` false until they are loaded.
    """
    entries = [_describe(nid, info) for nid, info in active_networks.items()]

    for row in list_saved_networks():
        if row['network_id'] in active_networks:
            continue
        entries.append({
            'network_id': row['network_id'],
            'sizes': row['architecture'],
            'accuracy': row['accuracy'],
            'dataset_attached': False,
            'saved': True,
            'source': 'database'
        })

    return jsonify({'networks': entries}), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """
    Forget a network.

    Returns:
        JSON naming the stores ('memory', 'database') it was removed from
    """
    removed = []
    if active_networks.pop(network_id, None) is not None:
        removed.append('memory')
    if delete_network(network_id):
        removed.append('database')

    if not removed:
        return jsonify({'error': 'Network not found'}), 404

    logger.info(f"Removed network {network_id} from {' and '.join(removed)}")
    return jsonify({'network_id': network_id, 'removed': removed}), 200


@app.route('/api/networks/cleanup', methods=['POST'])
def cleanup_old_networks_endpoint():
    """
    Delete saved networks older than the given number of days.

    Request body (optional):
        {'days': 2}  # defaults to 2
    """
    data = request.get_json(silent=True) or {}
    days = data.get('days', 2)

    if not is_count(days):
        return jsonify({'error': 'days must be a non-negative integer'}), 400

    deleted_count = delete_old_networks(days=days)
    if deleted_count == -1:
        return jsonify({'error': 'Error occurred during cleanup'}), 500

    # Drop in-memory copies of networks no longer in the database
    saved_ids = {net['network_id'] for net in list_saved_networks()}
    for nid in [nid for nid in active_networks if nid not in saved_ids]:
        if active_networks[nid]['saved']:
            del active_networks[nid]
            logger.info(f"Removed network {nid} from memory (deleted from database)")

    logger.info(f"Manual cleanup: deleted {deleted_count} network(s) older than {days} day(s)")

    return jsonify({
        'deleted_count': deleted_count,
        'days': days,
        'message': f'Successfully deleted {deleted_count} network(s) older than {days} day(s)'
    }), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

def main() -> None:
    port = config.server_port()

    try:
        reload_saved_networks()
    except DatasetError as e:
        logger.error(f"Cannot reload saved networks: {e}")

    logger.info(f"Starting server at http://localhost:{port}/")

    try:
        app.run(host='0.0.0.0', port=port, debug=not config.is_production(),
                use_reloader=False)
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        raise


if __name__ == '__main__':
    main()
