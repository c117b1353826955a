"""roller-hoops discovery core: device enrichment and run scheduling."""

__version__ = "0.1.0"
