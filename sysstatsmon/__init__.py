"""Sample CPU, memory, disk, network, host and OS feature statistics as labelled metrics."""

__version__ = "0.1.0"