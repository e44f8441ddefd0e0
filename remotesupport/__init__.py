"""Remote support server, simulated devices and factory client over a length-prefixed JSON protocol."""

__version__ = "0.1.0"