"""Blog API: user and post persistence services with a FastAPI surface."""

__version__ = "1.0.0"
