"""imginspect - container image inspection pipeline."""

__version__ = "0.1.0"
