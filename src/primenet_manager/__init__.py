"""Keep GPU work queues topped up from PrimeNet and submit finished results."""

__version__ = "0.3.0"
