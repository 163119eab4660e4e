"""OASIS Integration — signed OTP service client and trusted client-IP resolution."""

__version__ = "0.1.0"
