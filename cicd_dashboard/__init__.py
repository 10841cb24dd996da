"""CI/CD pipeline health dashboard backend."""

__version__ = "0.1.0"
