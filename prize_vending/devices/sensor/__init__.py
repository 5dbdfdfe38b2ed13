"""Hold sensor: debounced edge detection over a line-based serial feed."""

from .edge_detector import EdgeDetector, parse_sample
from .link import SensorLink


__all__ = ["EdgeDetector", "SensorLink", "parse_sample"]
