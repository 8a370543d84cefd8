"""
Error Taxonomy — What Can Go Wrong While Valuing a Position
============================================================

Three families, matching how the monitor reacts to them:

  • RPC errors        — a single on-chain read failed. Subclasses tell the
                        fallback ladder *why* (network vs. not-found vs.
                        malformed), so it can degrade instead of aborting.
  • Identity errors   — the position NFT itself cannot be read. Fatal for
                        that check; never degraded.
  • Resolution errors — the pool address lookup hit a provider outage.
                        Caught by the orchestrator and turned into a
                        tick-only snapshot.
"""


class LiquidityGuardError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(LiquidityGuardError, ValueError):
    """Unsupported chain, missing contract address, bad setting."""


# ── RPC ─────────────────────────────────────────────────────────────────


class RpcError(LiquidityGuardError, RuntimeError):
    """A JSON-RPC read failed."""


class RpcNetworkError(RpcError):
    """Transport failure, HTTP error, provider throttling or outage."""


class RpcTimeoutError(RpcNetworkError):
    """A read exceeded its bounded timeout."""


class RpcNotFoundError(RpcError):
    """Empty ``0x`` result or execution revert (no contract / bad id)."""


class RpcMalformedResponseError(RpcError):
    """Response could not be decoded (not JSON, short ABI payload...)."""


# ── Valuation ───────────────────────────────────────────────────────────


class PositionReadError(LiquidityGuardError):
    """The position NFT record could not be read — wrong id or network."""

    def __init__(self, position_id, reason: str):
        self.position_id = position_id
        self.reason = reason
        super().__init__(f"Position #{position_id}: {reason}")


class PoolResolutionError(LiquidityGuardError):
    """Pool address resolution aborted because the provider is unreachable."""
