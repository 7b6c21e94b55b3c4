"""Clients for the PrimeNet and GPU72 web endpoints."""
