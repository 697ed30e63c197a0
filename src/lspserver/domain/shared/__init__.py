"""Shared domain utilities.

This package is domain-accessible and should not depend on application code.
"""

from .lightning_client_protocol import LightningClientProtocol

__all__ = ["LightningClientProtocol"]
