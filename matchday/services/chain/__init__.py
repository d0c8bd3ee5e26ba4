"""Chain gateway backed by the oracle relayer service."""

from matchday.services.chain.relay import OracleRelayClient

__all__ = ["OracleRelayClient"]
