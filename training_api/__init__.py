"""Personal-training backend: scheduled push notifications."""

__version__ = "0.1.0"
