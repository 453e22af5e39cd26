"""SignLink: glove and remote-controller input as one message stream."""

__version__ = "0.1.0"
