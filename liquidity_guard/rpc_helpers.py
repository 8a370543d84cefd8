#!/usr/bin/env python3
"""
RPC Helpers — Shared ABI Encoding/Decoding and JSON-RPC Client
===============================================================

Low-level EVM interaction primitives used by the chain gateway and the
pool resolver:

  • ABI encoding/decoding (uint256, int256, address, uint24, int24, string)
  • JSON-RPC client (eth_call, eth_getLogs, eth_blockNumber)
  • Named constants for ABI word sizes and Q-values

Every client function raises a subclass of ``RpcError`` so callers can tell
a dead provider (``RpcNetworkError``) from a missing contract or revert
(``RpcNotFoundError``) and from garbage (``RpcMalformedResponseError``).

All constants reference the Ethereum ABI specification:
  https://docs.soliditylang.org/en/latest/abi-spec.html

Terminology:
  • Word:  32 bytes = 256 bits = 64 hex characters
  • Slot:  Position of a 32-byte word in an ABI response
  • Q96:   2^96  — fixed-point denominator for sqrtPriceX96
  • Q128:  2^128 — fixed-point denominator for feeGrowthX128
  • Q256:  2^256 — two's complement boundary for int256
"""

from typing import Any, Dict, List, Optional

import httpx

from liquidity_guard.errors import (
    RpcMalformedResponseError,
    RpcNetworkError,
    RpcNotFoundError,
    RpcTimeoutError,
)

# ── ABI Word Constants ──────────────────────────────────────────────────
# Ethereum ABI spec: https://docs.soliditylang.org/en/latest/abi-spec.html

ABI_WORD_BYTES = 32          # 1 ABI word = 32 bytes
ABI_WORD_HEX = 64            # 32 bytes × 2 hex chars = 64 hex characters
ADDRESS_HEX = 40              # 20 bytes × 2 = 40 hex characters
ADDRESS_PAD_HEX = 24          # Left padding in a 32-byte slot = 64 - 40 = 24 hex chars
SIGN_BIT = 1 << 255           # Two's complement sign bit for int256
ZERO_ADDRESS = "0x" + "0" * ADDRESS_HEX

# ── Uniswap V3 Fixed-Point Constants ───────────────────────────────────
# Ref: Uniswap V3 Whitepaper §6.1, https://uniswap.org/whitepaper-v3.pdf

Q96 = 2 ** 96                # sqrtPriceX96 denominator (FixedPoint96.RESOLUTION)
Q128 = 2 ** 128              # feeGrowthGlobalX128 denominator (FixedPoint128.Q128)
Q192 = 2 ** 192              # (sqrtPriceX96)^2 denominator
Q256 = 2 ** 256              # int256 overflow boundary (two's complement wrap)

# ── Common Token Symbol Normalization ───────────────────────────────────
# Some on-chain symbols use non-standard Unicode or suffixes.

SYMBOL_MAP = {
    "USD₮0": "USDT",
    "USD₮": "USDT",
    "USDT0": "USDT",
    "USDbC": "USDC",
}


def normalize_symbol(raw_symbol: str) -> str:
    """Normalize on-chain token symbol to common name."""
    cleaned = raw_symbol.strip().strip("\x00")
    return SYMBOL_MAP.get(cleaned, cleaned)


# ── ABI Function Selectors ──────────────────────────────────────────────
# First 4 bytes of keccak256(function_signature).

SELECTORS: dict[str, str] = {
    # NonfungiblePositionManager
    "positions":              "0x99fbab88",  # positions(uint256)

    # UniswapV3Pool (read-only state)
    "slot0":                  "0x3850c7bd",  # slot0()
    "feeGrowthGlobal0X128":   "0xf3058399",  # feeGrowthGlobal0X128()
    "feeGrowthGlobal1X128":   "0x46141319",  # feeGrowthGlobal1X128()
    "ticks":                  "0xf30dba93",  # ticks(int24)

    # UniswapV3Factory
    "getPool":                "0x1698ee82",  # getPool(address,address,uint24)

    # ERC-20 metadata
    "symbol":                 "0x95d89b41",  # symbol()
    "decimals":               "0x313ce567",  # decimals()
}

# JSON-RPC error codes that mean "the call executed and reverted".
# EIP-1474: 3 = execution error; -32000 is what geth uses for reverts.
_REVERT_CODES = {3, -32000}


# ── ABI Encoding ────────────────────────────────────────────────────────

def encode_uint256(value: int) -> str:
    """ABI-encode a uint256 as 32-byte hex (no 0x prefix).

    >>> encode_uint256(1)
    '0000000000000000000000000000000000000000000000000000000000000001'
    """
    return format(value, f'0{ABI_WORD_HEX}x')


def encode_address(addr: str) -> str:
    """ABI-encode an address as 32 bytes (left-padded, no 0x prefix).

    >>> encode_address('0xC36442b4a4522E871399CD717aBDD847Ab11FE88')
    '000000000000000000000000c36442b4a4522e871399cd717abdd847ab11fe88'
    """
    return addr.lower().replace("0x", "").zfill(ABI_WORD_HEX)


def encode_uint24(val: int) -> str:
    """ABI-encode a uint24 as 32 bytes (for fee tier parameter).

    >>> encode_uint24(3000)
    '0000000000000000000000000000000000000000000000000000000000000bb8'
    """
    return format(val, f'0{ABI_WORD_HEX}x')


def encode_int24(value: int) -> str:
    """ABI-encode an int24 sign-extended to int256 (for ticks).

    >>> encode_int24(-887220)
    'fffffffffffffffffffffffffffffffffffffffffffffffffffffffffff27e8c'
    """
    if value < 0:
        value = Q256 + value
    return format(value, f'0{ABI_WORD_HEX}x')


def encode_topic(word_hex: str) -> str:
    """Turn an encoded 32-byte word into an eth_getLogs topic (0x-prefixed)."""
    return "0x" + word_hex


# ── ABI Decoding ────────────────────────────────────────────────────────

def _require_slots(hex_data: str, slots: int) -> None:
    if len(hex_data) < slots * ABI_WORD_HEX:
        raise RpcMalformedResponseError(
            f"Expected at least {slots} ABI words, got {len(hex_data) // ABI_WORD_HEX}"
        )


def decode_uint(hex_data: str, slot: int = 0) -> int:
    """Decode uint256 from ABI response at 32-byte slot offset.

    Args:
        hex_data: Hex string (without 0x prefix).
        slot: Which 32-byte word to read (0-indexed).

    Raises:
        RpcMalformedResponseError: If the payload is too short or not hex.
    """
    _require_slots(hex_data, slot + 1)
    start = slot * ABI_WORD_HEX
    try:
        return int(hex_data[start:start + ABI_WORD_HEX], 16)
    except ValueError as e:
        raise RpcMalformedResponseError(f"Not a hex word at slot {slot}") from e


def decode_int(hex_data: str, slot: int = 0) -> int:
    """Decode int256 (two's complement) from ABI response."""
    val = decode_uint(hex_data, slot)
    if val >= SIGN_BIT:
        return val - Q256
    return val


def decode_address(hex_data: str, slot: int = 0) -> str:
    """Decode address (last 20 bytes of 32-byte slot)."""
    _require_slots(hex_data, slot + 1)
    start = slot * ABI_WORD_HEX
    return "0x" + hex_data[start + ADDRESS_PAD_HEX:start + ABI_WORD_HEX]


def decode_string(hex_data: str) -> str:
    """
    Decode ABI-encoded dynamic string return value.

    Handles both standard dynamic strings (offset + length + data)
    and non-standard bytes32 returns from some token contracts.
    """
    try:
        offset = decode_uint(hex_data, 0)
        word_offset = offset // ABI_WORD_BYTES
        length = decode_uint(hex_data, word_offset)
        start_byte = (word_offset + 1) * ABI_WORD_HEX
        hex_str = hex_data[start_byte:start_byte + length * 2]
        return bytes.fromhex(hex_str).decode("utf-8").strip("\x00")
    except (RpcMalformedResponseError, ValueError, UnicodeDecodeError):
        # Some tokens (MKR, SAI) return bytes32 instead of string
        try:
            raw = bytes.fromhex(hex_data[:ABI_WORD_HEX])
            return raw.decode("utf-8").strip("\x00").strip()
        except (ValueError, UnicodeDecodeError):
            return "UNK"


# ── JSON-RPC Client ─────────────────────────────────────────────────────

def _raise_for_rpc_error(error: Any) -> None:
    """Map a JSON-RPC ``error`` object onto the RpcError hierarchy."""
    if isinstance(error, dict):
        code = error.get("code")
        message = str(error.get("message", error))
    else:
        code = None
        message = str(error)
    if code in _REVERT_CODES or "revert" in message.lower():
        raise RpcNotFoundError(f"RPC error: {message}")
    raise RpcNetworkError(f"RPC error: {message}")


async def _post(rpc_url: str, payload: Dict[str, Any], timeout: float) -> Dict[str, Any]:
    """POST one JSON-RPC request and return the decoded envelope."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(rpc_url, json=payload)
            resp.raise_for_status()
            result = resp.json()
    except httpx.TimeoutException as e:
        raise RpcTimeoutError(f"RPC timed out after {timeout}s") from e
    except httpx.HTTPError as e:
        raise RpcNetworkError(f"{type(e).__name__}: {e}") from e
    except ValueError as e:
        raise RpcMalformedResponseError("RPC response is not JSON") from e
    if not isinstance(result, dict):
        raise RpcMalformedResponseError(f"Unexpected RPC envelope: {type(result).__name__}")
    if "error" in result:
        _raise_for_rpc_error(result["error"])
    return result


async def eth_call(rpc_url: str, to: str, data: str, timeout: float = 20) -> str:
    """
    Execute eth_call on an EVM node.

    Args:
        rpc_url: JSON-RPC endpoint URL (e.g. https://1rpc.io/base)
        to: Contract address (0x...)
        data: ABI-encoded calldata (0x + selector + params)
        timeout: HTTP timeout in seconds

    Returns:
        Hex response string (without 0x prefix).

    Raises:
        RpcNetworkError: Transport failure or provider-side error.
        RpcNotFoundError: Execution reverted or empty response.
        RpcMalformedResponseError: Response is not a hex string.
    """
    payload = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "eth_call",
        "params": [{"to": to, "data": data}, "latest"],
    }
    result = await _post(rpc_url, payload, timeout)
    raw = result.get("result", "0x")
    if not isinstance(raw, str):
        raise RpcMalformedResponseError(f"eth_call result is {type(raw).__name__}")
    if raw == "0x" or len(raw) < 4:
        raise RpcNotFoundError("Empty response — contract may not exist at this address")
    return raw[2:]  # strip 0x prefix


async def eth_get_logs(
    rpc_url: str,
    address: str,
    topics: List[Optional[str]],
    from_block: int = 0,
    to_block: str = "latest",
    timeout: float = 20,
) -> List[Dict[str, Any]]:
    """
    Query event logs emitted by ``address`` matching ``topics``.

    Returns:
        List of raw log dicts in node order (oldest first).
    """
    payload = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "eth_getLogs",
        "params": [{
            "address": address,
            "topics": topics,
            "fromBlock": hex(from_block),
            "toBlock": to_block,
        }],
    }
    result = await _post(rpc_url, payload, timeout)
    logs = result.get("result")
    if not isinstance(logs, list):
        raise RpcMalformedResponseError("eth_getLogs result is not a list")
    return logs


async def eth_block_number(rpc_url: str, timeout: float = 10) -> int:
    """
    Get the latest block number from an EVM node.

    Args:
        rpc_url: JSON-RPC endpoint URL
        timeout: HTTP timeout in seconds

    Returns:
        Latest block number as integer.
    """
    payload = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "eth_blockNumber",
        "params": [],
    }
    result = await _post(rpc_url, payload, timeout)
    try:
        return int(result["result"], 16)
    except (KeyError, TypeError, ValueError) as e:
        raise RpcMalformedResponseError("eth_blockNumber returned no hex result") from e
