"""turnprobe - TURN/STUN server reachability prober."""

__version__ = "0.1.0"
