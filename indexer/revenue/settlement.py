"""Buy-and-burn settlement: swap the burn share into GSD via Jupiter.

The pipeline is quote -> build -> sign -> submit -> confirm. Every external
step raises SettlementError on failure; ``BuyAndBurnSettlement.execute``
turns that into a None result so callers never block distribution on it.
"""

import base64
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from config import Config
from log import get_logger

logger = get_logger(__name__)

MAX_PRIORITY_FEE_LAMPORTS = 500000
CONFIRMED_STATUSES = ("confirmed", "finalized")


class SettlementError(Exception):
    """Raised when a settlement step fails."""
    pass


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of a submitted swap.

    Attributes:
        signature: Swap transaction signature
        gsd_amount: Quoted output amount (raw GSD units)
        confirmed: False if the swap was sent but confirmation failed
    """
    signature: str
    gsd_amount: int
    confirmed: bool = True


class TransactionSigner(Protocol):
    """Signs serialized versioned transactions for the burn authority."""

    @property
    def public_key(self) -> str: ...

    def sign(self, raw_transaction: bytes) -> bytes: ...


class KeypairSigner:
    """TransactionSigner backed by a local ed25519 keypair."""

    def __init__(self, keypair: Keypair):
        self.keypair = keypair

    @property
    def public_key(self) -> str:
        return str(self.keypair.pubkey())

    def sign(self, raw_transaction: bytes) -> bytes:
        unsigned = VersionedTransaction.from_bytes(raw_transaction)
        signed = VersionedTransaction(unsigned.message, [self.keypair])
        return bytes(signed)


class JupiterClient:
    """Minimal client for the Jupiter swap API (v1)."""

    def __init__(self, base_url: str, api_key: str, client: Optional[httpx.Client] = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.client = client or httpx.Client(timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key}

    def quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> Dict[str, Any]:
        """Fetch a swap quote.

        Raises:
            SettlementError: On transport errors or a non-2xx response
        """
        try:
            response = self.client.get(
                f"{self.base_url}/quote",
                params={
                    "inputMint": input_mint,
                    "outputMint": output_mint,
                    "amount": str(amount),
                    "slippageBps": str(slippage_bps),
                },
                headers=self._headers(),
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise SettlementError(
                f"Jupiter quote failed ({e.response.status_code}): {e.response.text}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise SettlementError(f"Jupiter quote error: {e}") from e

    def build_swap(self, quote: Dict[str, Any], user_public_key: str) -> bytes:
        """Build the swap transaction for ``quote``.

        Returns:
            Serialized unsigned versioned transaction

        Raises:
            SettlementError: On transport errors, a non-2xx response or a malformed body
        """
        body = {
            "quoteResponse": quote,
            "userPublicKey": user_public_key,
            "dynamicComputeUnitLimit": True,
            "dynamicSlippage": True,
            "prioritizationFeeLamports": {
                "priorityLevelWithMaxLamports": {
                    "maxLamports": MAX_PRIORITY_FEE_LAMPORTS,
                    "priorityLevel": "high",
                },
            },
        }
        try:
            response = self.client.post(f"{self.base_url}/swap", json=body, headers=self._headers())
            response.raise_for_status()
            return base64.b64decode(response.json()["swapTransaction"])
        except httpx.HTTPStatusError as e:
            raise SettlementError(
                f"Jupiter swap failed ({e.response.status_code}): {e.response.text}"
            ) from e
        except (httpx.HTTPError, ValueError, KeyError) as e:
            raise SettlementError(f"Jupiter swap build error: {e}") from e


class SolanaRpcClient:
    """JSON-RPC client for submitting and confirming transactions."""

    def __init__(
        self,
        rpc_url: str,
        client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
        poll_interval: float = 2.0,
    ):
        self.rpc_url = rpc_url
        self.client = client or httpx.Client(timeout=timeout)
        self.poll_interval = poll_interval
        self._request_id = 0

    def _call(self, method: str, params: list) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            response = self.client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SettlementError(f"RPC {method} failed: {e}") from e

        if data.get("error"):
            raise SettlementError(f"RPC {method} error: {data['error']}")
        return data.get("result")

    def send_transaction(self, raw_transaction: bytes) -> str:
        """Submit a signed transaction without preflight; returns its signature."""
        encoded = base64.b64encode(raw_transaction).decode("ascii")
        return self._call("sendTransaction", [encoded, {"encoding": "base64", "skipPreflight": True}])

    def confirm_transaction(self, signature: str, timeout_seconds: float) -> None:
        """Poll until ``signature`` is confirmed.

        Raises:
            SettlementError: If the transaction failed or was not confirmed in time
        """
        deadline = time.monotonic() + timeout_seconds
        while True:
            result = self._call("getSignatureStatuses", [[signature]])
            values = result.get("value") if isinstance(result, dict) else None
            status = values[0] if values else None
            if isinstance(status, dict):
                if status.get("err") is not None:
                    raise SettlementError(f"Transaction {signature} failed: {status['err']}")
                if status.get("confirmationStatus") in CONFIRMED_STATUSES:
                    return
            if time.monotonic() >= deadline:
                raise SettlementError(f"Transaction {signature} not confirmed after {timeout_seconds}s")
            time.sleep(self.poll_interval)


class BuyAndBurnSettlement:
    """Swaps an amount of SOL/USDC into GSD for burning."""

    def __init__(
        self,
        jupiter: JupiterClient,
        rpc: SolanaRpcClient,
        signer: TransactionSigner,
        gsd_mint: str,
        slippage_bps: int = 150,
        confirm_timeout_seconds: float = 60,
    ):
        self.jupiter = jupiter
        self.rpc = rpc
        self.signer = signer
        self.gsd_mint = gsd_mint
        self.slippage_bps = slippage_bps
        self.confirm_timeout_seconds = confirm_timeout_seconds

    @classmethod
    def from_config(cls, config: Config, signer: TransactionSigner) -> "BuyAndBurnSettlement":
        return cls(
            jupiter=JupiterClient(config.jupiter_api_base, config.jupiter_api_key or ""),
            rpc=SolanaRpcClient(config.rpc_url),
            signer=signer,
            gsd_mint=config.gsd_mint or "",
            slippage_bps=config.slippage_bps,
            confirm_timeout_seconds=config.confirm_timeout_seconds,
        )

    def execute(self, amount: int, source_mint: str) -> Optional[SettlementResult]:
        """Run the swap pipeline.

        Args:
            amount: Raw input amount (lamports or USDC units)
            source_mint: Mint being sold

        Returns:
            SettlementResult once submitted (``confirmed`` False if confirmation
            failed), or None if any step before submission failed
        """
        try:
            quote = self.jupiter.quote(source_mint, self.gsd_mint, amount, self.slippage_bps)
            gsd_amount = int(quote.get("outAmount") or 0)
            unsigned = self.jupiter.build_swap(quote, self.signer.public_key)
        except (SettlementError, AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Buy-and-burn aborted: {e}")
            return None

        try:
            signed = self.signer.sign(unsigned)
        except Exception as e:
            logger.warning(f"Buy-and-burn aborted, could not sign swap: {e}")
            return None

        try:
            signature = self.rpc.send_transaction(signed)
        except SettlementError as e:
            logger.warning(f"Buy-and-burn aborted: {e}")
            return None

        try:
            self.rpc.confirm_transaction(signature, self.confirm_timeout_seconds)
        except Exception as e:
            # Sent but unconfirmed; the swap may still land, so the signature is kept
            logger.warning(f"Swap {signature} confirmation failed: {e}")
            return SettlementResult(signature=signature, gsd_amount=gsd_amount, confirmed=False)

        logger.info(f"Swap {signature} confirmed: {gsd_amount} GSD acquired")
        return SettlementResult(signature=signature, gsd_amount=gsd_amount)
