"""autoflow: turns automation plans into validated workflow graphs."""

__version__ = "0.1.0"
