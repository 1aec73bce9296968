"""Jupiter aggregator swaps signed locally and sent through a Solana RPC.

Flow per swap:
  1. GET  {quote_api}/quote   -> route for the exact token amount
  2. POST {quote_api}/swap    -> unsigned versioned transaction (base64)
  3. sign with the order owner's keypair (solders); the first signature is
     the transaction id, known before anything leaves the process
  4. JSON-RPC sendTransaction with preflight on

BUY orders use ExactOut (spend SOL, receive exactly ``amount`` tokens);
SELL orders use ExactIn (spend exactly ``amount`` tokens, receive SOL).
"""

from __future__ import annotations

import base64
from typing import Any, Optional

import httpx
import structlog
from solders.transaction import VersionedTransaction

from limit_engine.db.models import OrderType
from limit_engine.exceptions import (
    AmbiguousSwapError,
    SwapRejectedError,
    TerminalSwapError,
    TransientSwapError,
)
from limit_engine.execution.models import PreparedSwap, TxStatus
from limit_engine.execution.wallets import KeypairResolver
from limit_engine.feeds.base import SOL_MINT, TokenPair

logger = structlog.get_logger()

JUPITER_QUOTE_API = "https://quote-api.jup.ag/v6"

# Quote errors that no amount of retrying will fix
_TERMINAL_QUOTE_ERRORS = (
    "COULD_NOT_FIND_ANY_ROUTE",
    "TOKEN_NOT_TRADABLE",
    "NO_ROUTES_FOUND",
    "CIRCULAR_ARBITRAGE_IS_DISABLED",
)
_INSUFFICIENT_MARKERS = ("insufficient funds", "insufficient lamports")
_FEE_RESERVE_LAMPORTS = 10_000_000  # rent + fees headroom for BUY balance checks


class JupiterSwapService:
    """SwapServiceProtocol implementation for Jupiter v6.

    Each swap is built for and signed by the wallet ``keypair_resolver``
    returns for the order's owner.
    """

    def __init__(
        self,
        *,
        keypair_resolver: KeypairResolver,
        rpc_url: str,
        quote_api_url: str = JUPITER_QUOTE_API,
        sol_decimals: int = 9,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.keypair_resolver = keypair_resolver
        self.rpc_url = rpc_url
        self.quote_api_url = quote_api_url.rstrip("/")
        self.sol_decimals = sol_decimals
        self.timeout = timeout
        self._client = client
        self._decimals: dict[str, int] = {SOL_MINT: sol_decimals}
        self._rpc_id = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=10.0))
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # RPC helpers
    # ------------------------------------------------------------------

    async def _rpc(self, method: str, params: list) -> Any:
        """JSON-RPC call. Returns the ``result`` or raises RpcError."""
        client = await self._ensure_client()
        self._rpc_id += 1
        resp = await client.post(self.rpc_url, json={
            "jsonrpc": "2.0",
            "id": self._rpc_id,
            "method": method,
            "params": params,
        })
        resp.raise_for_status()
        body = resp.json()
        if body.get("error"):
            raise RpcError(body["error"])
        return body.get("result")

    async def _token_decimals(self, mint: str) -> int:
        if mint not in self._decimals:
            try:
                result = await self._rpc("getTokenSupply", [mint])
            except RpcError as exc:
                raise TerminalSwapError(f"unknown token {mint}: {exc}") from exc
            except httpx.HTTPError as exc:
                raise TransientSwapError(f"decimals lookup failed: {exc}") from exc
            self._decimals[mint] = int(result["value"]["decimals"])
        return self._decimals[mint]

    # ------------------------------------------------------------------
    # SwapServiceProtocol
    # ------------------------------------------------------------------

    async def prepare_swap(
        self,
        user_id: int,
        pair: TokenPair,
        amount: float,
        side: OrderType,
        max_slippage_bps: int,
    ) -> PreparedSwap:
        side = OrderType(side)
        if amount <= 0:
            raise TerminalSwapError("amount must be positive")
        keypair = await self.keypair_resolver(user_id)
        wallet = str(keypair.pubkey())
        token_decimals = await self._token_decimals(pair.token)
        token_raw = int(round(amount * 10 ** token_decimals))

        if side is OrderType.BUY:
            params = {
                "inputMint": pair.base, "outputMint": pair.token,
                "amount": str(token_raw), "swapMode": "ExactOut",
            }
        else:
            params = {
                "inputMint": pair.token, "outputMint": pair.base,
                "amount": str(token_raw), "swapMode": "ExactIn",
            }
        params["slippageBps"] = int(max_slippage_bps)

        quote = await self._get_quote(params)
        sol_raw = int(quote["inAmount"] if side is OrderType.BUY else quote["outAmount"])
        sol_amount = sol_raw / 10 ** self.sol_decimals

        if side is OrderType.BUY:
            await self._check_sol_balance(wallet, sol_raw)

        swap_body = await self._get_swap_transaction(quote, wallet)
        try:
            unsigned = VersionedTransaction.from_bytes(
                base64.b64decode(swap_body["swapTransaction"]))
            signed = VersionedTransaction(unsigned.message, [keypair])
        except (KeyError, ValueError) as exc:
            raise TransientSwapError(f"malformed swap transaction: {exc}") from exc

        prepared = PreparedSwap(
            pair=pair,
            side=side,
            amount=amount,
            sol_amount=sol_amount,
            signature=str(signed.signatures[0]),
            signed_tx=bytes(signed),
            slippage_bps=int(max_slippage_bps),
            last_valid_block_height=swap_body.get("lastValidBlockHeight"),
        )
        logger.info("swap_prepared", user_id=user_id, wallet=wallet, side=side.value,
                    token=pair.token, amount=amount, sol_amount=sol_amount,
                    price_impact=quote.get("priceImpactPct"),
                    signature=prepared.signature)
        return prepared

    async def submit(self, prepared: PreparedSwap) -> str:
        encoded = base64.b64encode(prepared.signed_tx).decode()
        try:
            result = await self._rpc("sendTransaction", [
                encoded,
                {"encoding": "base64", "skipPreflight": False, "maxRetries": 3},
            ])
        except RpcError as exc:
            # Preflight failures are returned before broadcast.
            if exc.is_preflight_failure:
                if exc.mentions(_INSUFFICIENT_MARKERS):
                    raise TerminalSwapError(f"insufficient funds: {exc}") from exc
                raise SwapRejectedError(f"transaction rejected: {exc}") from exc
            raise AmbiguousSwapError(str(exc), signature=prepared.signature) from exc
        except httpx.HTTPError as exc:
            raise AmbiguousSwapError(
                f"sendTransaction failed: {exc}", signature=prepared.signature) from exc

        signature = str(result or prepared.signature)
        if signature != prepared.signature:
            logger.warning("signature_mismatch", expected=prepared.signature, got=signature)
        logger.info("swap_submitted", signature=signature)
        return signature

    async def get_transaction_status(self, signature: str) -> TxStatus:
        try:
            result = await self._rpc(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": True}],
            )
        except (RpcError, httpx.HTTPError) as exc:
            raise TransientSwapError(f"status lookup failed: {exc}") from exc
        values = (result or {}).get("value") or [None]
        status = values[0]
        if status is None:
            return TxStatus.UNKNOWN
        if status.get("err") is not None:
            return TxStatus.FAILED
        if status.get("confirmationStatus") in ("confirmed", "finalized"):
            return TxStatus.CONFIRMED
        return TxStatus.UNKNOWN

    # ------------------------------------------------------------------
    # Jupiter helpers
    # ------------------------------------------------------------------

    async def _get_quote(self, params: dict[str, Any]) -> dict[str, Any]:
        client = await self._ensure_client()
        try:
            resp = await client.get(f"{self.quote_api_url}/quote", params=params)
        except httpx.HTTPError as exc:
            raise TransientSwapError(f"quote request failed: {exc}") from exc
        if resp.status_code >= 400:
            body = _safe_json(resp)
            code = str(body.get("errorCode") or body.get("error") or "")
            if any(marker in code for marker in _TERMINAL_QUOTE_ERRORS):
                raise TerminalSwapError(f"no route: {code}")
            raise TransientSwapError(f"quote error {resp.status_code}: {code or resp.text[:200]}")
        quote = resp.json()
        if not quote.get("inAmount") or not quote.get("outAmount"):
            raise TransientSwapError("invalid quote: empty inAmount or outAmount")
        return quote

    async def _get_swap_transaction(self, quote: dict[str, Any], wallet: str) -> dict[str, Any]:
        client = await self._ensure_client()
        try:
            resp = await client.post(
                f"{self.quote_api_url}/swap",
                json={
                    "quoteResponse": quote,
                    "userPublicKey": wallet,
                    "wrapAndUnwrapSol": True,
                    "dynamicComputeUnitLimit": True,
                    "prioritizationFeeLamports": "auto",
                },
            )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransientSwapError(f"swap build failed: {exc}") from exc
        body = resp.json()
        if not body.get("swapTransaction"):
            raise TransientSwapError(f"no swap transaction returned: {body.get('error')}")
        return body

    async def _check_sol_balance(self, wallet: str, needed_lamports: int) -> None:
        try:
            result = await self._rpc("getBalance", [wallet])
        except (RpcError, httpx.HTTPError) as exc:
            raise TransientSwapError(f"balance lookup failed: {exc}") from exc
        balance = int((result or {}).get("value", 0))
        if balance < needed_lamports + _FEE_RESERVE_LAMPORTS:
            raise TerminalSwapError(
                f"insufficient funds in {wallet}: have {balance} lamports, "
                f"need {needed_lamports}")


class RpcError(Exception):
    """JSON-RPC level error returned by the Solana node."""

    # sendTransaction preflight simulation failed
    PREFLIGHT_FAILURE = -32002

    def __init__(self, error: dict[str, Any]) -> None:
        self.code = error.get("code")
        self.data = error.get("data")
        super().__init__(error.get("message", str(error)))

    @property
    def is_preflight_failure(self) -> bool:
        return self.code == self.PREFLIGHT_FAILURE

    def mentions(self, markers: tuple[str, ...]) -> bool:
        text = f"{self} {self.data}".lower()
        return any(m in text for m in markers)


def _safe_json(resp: httpx.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
