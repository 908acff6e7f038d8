"""Scout: web-search augmented chat with resumable streams."""

__version__ = "0.1.0"
