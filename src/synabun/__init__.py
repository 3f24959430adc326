"""SynaBun: persistent vector memory with a live category taxonomy."""

__version__ = "0.3.0"
