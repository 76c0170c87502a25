"""Rails audit toolkit."""

__version__ = "0.3.0"
