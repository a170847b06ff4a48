"""All-to-all broadcast protocols and Rotor simulations for Alpenglow consensus."""

__version__ = "0.1.0"
__all__ = ["all2all", "bandwidth", "latency", "rotor_safety", "simulations"]