"""Traffic-light-aware speed planning, sensor fusion and command serving for a vehicle."""

__version__ = "0.1.0"
__all__ = ["controller", "signal_io", "sender"]