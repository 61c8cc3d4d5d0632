"""Geographic job clustering, technician assignment and route sequencing."""

__version__ = "0.1.0"
