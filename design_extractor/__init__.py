"""Turn a URL into a design-system artifact through a checkpointed pipeline."""

__version__ = "0.1.0"
