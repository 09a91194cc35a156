"""azpim - Azure PIM role activation from the command line."""

__version__ = "0.1.0"
