"""Yu-Gi-Oh! card scanner: photo in, structured card record out."""

__version__ = "0.1.0"
