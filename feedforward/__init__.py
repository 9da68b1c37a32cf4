"""
feedforward package
~~~~~~~~~~~~~~~~~~~

Feed-forward network inference over MNIST data. Contains the IDX
dataset loader, the network and its forward pass, model persistence,
and the API server.
"""

__version__ = "1.0.0"
