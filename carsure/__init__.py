"""CarSure DZ workshop appointment backend."""

__version__ = "0.1.0"
