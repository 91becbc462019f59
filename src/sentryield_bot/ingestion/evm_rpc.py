"""Minimal EVM JSON-RPC reader for ERC20 and vault view functions.

Calls go over plain JSON-RPC with hand-built calldata: a 4-byte selector
followed by 32-byte words. Arguments are limited to uint256 and address;
returns cover uint, bool, address and the dynamic string of ``symbol()``.
"""

from __future__ import annotations

import itertools
import threading
from typing import Any, List, Optional, Sequence, Union

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..config.settings import RPCConfig, get_app_config
from ..errors import RpcError, UnsupportedFunctionError
from ..monitoring.logger import get_logger
from ..utils.constants import is_hex_address

# JSON-RPC error code geth-style nodes use for reverted calls.
_EXECUTION_REVERTED = 3

_WORD = 64

# keccak256(signature)[:4] for every view function the bot calls.
SELECTORS = {
    "balanceOf(address)": "70a08231",
    "decimals()": "313ce567",
    "symbol()": "95d89b41",
    "totalAssets()": "01e1d114",
    "maxWithdraw(address)": "ce96cb77",
    "depositToken()": "c89039c5",
    "totalUserShares()": "04994712",
    "hasOpenLpPosition()": "259c6d34",
}


def encode_uint256(value: int) -> str:
    """Encode a uint256 as a 32-byte hex word (no ``0x`` prefix)."""
    value = int(value)
    if value < 0 or value >= 1 << 256:
        raise ValueError(f"uint256 out of range: {value}")
    return format(value, "x").zfill(_WORD)


def encode_address(value: str) -> str:
    if not is_hex_address(value):
        raise ValueError(f"Invalid address: {value}")
    return value[2:].lower().zfill(_WORD)


def encode_words(args: Sequence[Union[int, str]]) -> str:
    """Strings are encoded as addresses and everything else as uint256."""
    return "".join(encode_address(arg) if isinstance(arg, str) else encode_uint256(arg) for arg in args)


def encode_call(signature: str, args: Sequence[Union[int, str]] = ()) -> str:
    try:
        selector = SELECTORS[signature]
    except KeyError:
        raise ValueError(f"No selector registered for {signature}") from None
    return "0x" + selector + encode_words(args)


def split_words(raw: str) -> List[str]:
    body = raw[2:] if raw.startswith("0x") else raw
    if not body or len(body) % _WORD:
        raise ValueError(f"Return data is not word aligned ({len(body)} hex chars)")
    int(body, 16)
    return [body[offset : offset + _WORD] for offset in range(0, len(body), _WORD)]


def decode_uint256(word: str) -> int:
    return int(word, 16)


def decode_address(word: str) -> str:
    return "0x" + word[-40:].lower()


def decode_bool(word: str) -> bool:
    return int(word, 16) != 0


def decode_string(words: Sequence[str]) -> str:
    """Decode an ABI dynamic string: offset word, length word, then padded bytes."""
    start = int(words[0], 16) // 32
    if start + 1 > len(words):
        raise ValueError("String offset points past the return data")
    length = int(words[start], 16)
    data = bytes.fromhex("".join(words[start + 1 :]))
    if length > len(data):
        raise ValueError("String length exceeds the return data")
    return data[:length].decode("utf-8", errors="replace")


_DECODERS = {
    "uint256": decode_uint256,
    "uint8": decode_uint256,
    "address": decode_address,
    "bool": decode_bool,
}


class EvmRpcClient:
    """Performs read-only ``eth_call`` requests against a single endpoint."""

    def __init__(
        self,
        config: Optional[RPCConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config or get_app_config().rpc
        self._url = str(self._config.url)
        self._session = session or requests.Session()
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()
        self._logger = get_logger(__name__)

    @property
    def url(self) -> str:
        return self._url

    def call(
        self,
        to: str,
        signature: str,
        args: Sequence[Union[int, str]] = (),
        returns: str = "uint256",
    ) -> Any:
        """Call a view function and decode its first return word as ``returns``."""

        if not is_hex_address(to):
            raise RpcError(f"Invalid contract address: {to}")
        try:
            data = encode_call(signature, args)
        except ValueError as exc:
            raise RpcError(f"Cannot encode {signature} for {to}: {exc}") from exc
        params = [{"to": to.lower(), "data": data}, "latest"]
        raw = self._request("eth_call", params)
        if not isinstance(raw, str) or raw in ("0x", ""):
            raise UnsupportedFunctionError(f"{signature} returned no data at {to}")
        try:
            words = split_words(raw)
            if returns == "string":
                return decode_string(words)
        except ValueError as exc:
            raise UnsupportedFunctionError(f"{signature} returned undecodable data at {to}") from exc
        return _DECODERS[returns](words[0])

    def balance_of(self, token: str, account: str) -> int:
        return self.call(token, "balanceOf(address)", (account,))

    def decimals(self, token: str) -> int:
        return self.call(token, "decimals()", returns="uint8")

    def symbol(self, token: str) -> str:
        return self.call(token, "symbol()", returns="string")

    def _request(self, method: str, params: list) -> Any:
        with self._id_lock:
            request_id = next(self._ids)
        payload = self._post({"jsonrpc": "2.0", "id": request_id, "method": method, "params": params})
        error = payload.get("error") if isinstance(payload, dict) else None
        if error:
            message = str(error.get("message", "")) if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            if code == _EXECUTION_REVERTED or "revert" in message.lower():
                raise UnsupportedFunctionError(f"{method} reverted: {message}")
            raise RpcError(f"{method} failed: {message}")
        if not isinstance(payload, dict) or "result" not in payload:
            raise RpcError(f"{method} returned a malformed response")
        return payload["result"]

    @retry(
        retry=retry_if_exception_type(requests.RequestException),
        stop=stop_after_attempt(2),
        wait=wait_fixed(0.5),
        reraise=True,
    )
    def _post_with_retry(self, body: dict) -> Any:
        response = self._session.post(self._url, json=body, timeout=self._config.request_timeout)
        response.raise_for_status()
        return response.json()

    def _post(self, body: dict) -> Any:
        try:
            return self._post_with_retry(body)
        except (requests.RequestException, ValueError) as exc:
            self._logger.debug("RPC %s failed on %s: %s", body.get("method"), self._url, exc)
            raise RpcError(f"RPC {body.get('method')} failed: {exc}") from exc


__all__ = [
    "EvmRpcClient",
    "SELECTORS",
    "decode_address",
    "decode_bool",
    "decode_string",
    "decode_uint256",
    "encode_address",
    "encode_call",
    "encode_uint256",
    "encode_words",
    "is_hex_address",
    "split_words",
]
