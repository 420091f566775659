"""
Ledger client interface and the Helius-backed implementation.

The network variant (devnet or mainnet) is fixed when a client is built and
determines which priority fee strategy it carries. Standard RPC methods go
through solana-py; the Helius-only fee recommendation is a plain JSON-RPC
call over aiohttp, decoded by the typed decoder registered for it in
RESPONSE_DECODERS.
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

import aiohttp
import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment, Confirmed
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .cancellation import AbortSignal, abortable
from .config import HeliusSettings
from .exceptions import (
    BlockhashNotFoundError,
    ConfigurationError,
    RPCConnectionError,
    RPCError,
    RPCMethodNotFoundError,
    RPCResponseError,
    RPCTimeoutError,
    TransactionAlreadyProcessedError,
    TransactionConfirmationError,
    TransactionExpiredError,
    TransactionSendError,
    TransactionSimulationError,
    wrap_exception,
)
from .fees import PriorityFeeStrategy, fee_strategy_for_cluster
from .instructions import (
    MAX_COMPUTE_UNIT_LIMIT,
    ComputeBudgetInstruction,
    create_set_compute_unit_limit_instruction,
    identify_compute_budget_instruction,
)
from .types import Cluster, CommitmentLevel, DraftMessage, LifetimeAnchor, SignedTransaction

logger = logging.getLogger(__name__)

T = TypeVar("T")

HELIUS_ENDPOINTS = {
    Cluster.DEVNET: "https://devnet.helius-rpc.com/?api-key={api_key}",
    Cluster.MAINNET: "https://mainnet.helius-rpc.com/?api-key={api_key}",
}

JSON_RPC_METHOD_NOT_FOUND = -32601

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 0.5


# =============================================================================
# RESPONSE DECODERS
# =============================================================================

def decode_priority_fee_estimate(result: Any) -> int:
    # The service reports fractional micro-lamports; round up so the fee is never under the estimate.
    return math.ceil(Decimal(str(result["priorityFeeEstimate"])))


RESPONSE_DECODERS: Dict[str, Callable[[Any], Any]] = {
    "getPriorityFeeEstimate": decode_priority_fee_estimate,
}


def is_already_processed(error: Exception) -> bool:
    text = str(error).lower()
    return "alreadyprocessed" in text or "already been processed" in text


def _commitment_of(confirmation_status: Any) -> Optional[CommitmentLevel]:
    if confirmation_status is None:
        return None
    name = str(confirmation_status).split(".")[-1].lower()
    try:
        return CommitmentLevel(name)
    except ValueError:
        return None


def helius_endpoint(
    cluster: Cluster,
    api_key: Optional[str] = None,
    endpoint: Optional[str] = None,
) -> str:
    if (api_key is None) == (endpoint is None):
        raise ConfigurationError("Exactly one of api_key or endpoint is required")
    if endpoint is not None:
        return endpoint
    return HELIUS_ENDPOINTS[Cluster(cluster)].format(api_key=api_key)


# =============================================================================
# CLIENT INTERFACE
# =============================================================================

class LedgerClient(ABC):
    """
    Network operations used to build and submit a transaction.

    Every method accepts an optional abort signal and abandons its in-flight
    call when the signal fires.
    """

    def __init__(self, cluster: Cluster, fee_strategy: Optional[PriorityFeeStrategy] = None):
        self.cluster = Cluster(cluster)
        self.fee_strategy = fee_strategy or fee_strategy_for_cluster(self.cluster)

    @abstractmethod
    async def get_latest_anchor(self, abort_signal: Optional[AbortSignal] = None) -> LifetimeAnchor:
        pass

    @abstractmethod
    async def get_recent_priority_fees(
        self,
        accounts: Sequence[Pubkey],
        abort_signal: Optional[AbortSignal] = None,
    ) -> List[int]:
        pass

    @abstractmethod
    async def get_recommended_priority_fee(
        self,
        accounts: Sequence[Pubkey],
        abort_signal: Optional[AbortSignal] = None,
    ) -> int:
        pass

    @abstractmethod
    async def simulate_compute_units(
        self,
        draft: DraftMessage,
        abort_signal: Optional[AbortSignal] = None,
    ) -> int:
        pass

    @abstractmethod
    async def submit(
        self,
        transaction: SignedTransaction,
        commitment: CommitmentLevel = CommitmentLevel.CONFIRMED,
        abort_signal: Optional[AbortSignal] = None,
    ) -> Signature:
        """Send the signed bytes once, with provider-side retries disabled."""

    @abstractmethod
    async def await_confirmation(
        self,
        signature: Signature,
        anchor: LifetimeAnchor,
        commitment: CommitmentLevel = CommitmentLevel.CONFIRMED,
        abort_signal: Optional[AbortSignal] = None,
    ) -> CommitmentLevel:
        """Wait until `signature` reaches `commitment`. Does not time out on its own."""

    async def close(self):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()


# =============================================================================
# HELIUS CLIENT
# =============================================================================

class HeliusRpcClient(LedgerClient):

    def __init__(
        self,
        endpoint: str,
        cluster: Cluster,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        skip_preflight: bool = False,
        fee_strategy: Optional[PriorityFeeStrategy] = None,
    ):
        super().__init__(cluster, fee_strategy)
        self.endpoint = endpoint
        self.request_timeout = request_timeout
        self.poll_interval = poll_interval
        self.skip_preflight = skip_preflight
        self._client = AsyncClient(endpoint, timeout=request_timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"Content-Type": "application/json"})
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        await self._client.close()

    def _transport_error(self, method: str, error: BaseException) -> RPCError:
        cause = error.__cause__ or error
        if isinstance(cause, (httpx.TimeoutException, asyncio.TimeoutError)):
            return RPCTimeoutError(
                message=f"{method} timed out",
                rpc_endpoint=self.endpoint,
                timeout_seconds=self.request_timeout,
            )
        return wrap_exception(
            cause,
            RPCConnectionError,
            message=f"{method} failed: {cause}",
            rpc_endpoint=self.endpoint,
        )

    async def _solana(self, method: str, call: Awaitable[T], abort_signal: Optional[AbortSignal]) -> T:
        try:
            response = await abortable(call, abort_signal)
        except (SolanaRpcException, httpx.HTTPError) as e:
            raise self._transport_error(method, e) from e
        if not hasattr(response, "value"):
            raise RPCResponseError(
                message=f"{method} returned an error: {response}",
                rpc_endpoint=self.endpoint,
                rpc_error_message=str(response),
            )
        return response

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        session = await self._get_session()
        method = payload["method"]
        try:
            async with session.post(
                self.endpoint,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            ) as response:
                return await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise RPCTimeoutError(
                message=f"{method} timed out",
                rpc_endpoint=self.endpoint,
                timeout_seconds=self.request_timeout,
            ) from e
        except aiohttp.ClientError as e:
            raise self._transport_error(method, e) from e

    async def _json_rpc(
        self,
        method: str,
        params: List[Any],
        abort_signal: Optional[AbortSignal] = None,
    ) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params,
        }
        data = await abortable(self._post(payload), abort_signal)

        if "error" in data:
            error = data["error"] or {}
            code = error.get("code")
            if code == JSON_RPC_METHOD_NOT_FOUND:
                raise RPCMethodNotFoundError(
                    message=f"{method} is not supported by this endpoint",
                    rpc_endpoint=self.endpoint,
                    method_name=method,
                )
            raise RPCResponseError(
                message=f"{method} failed: {error.get('message', error)}",
                rpc_endpoint=self.endpoint,
                rpc_error_code=code,
                rpc_error_message=error.get("message"),
            )

        try:
            return RESPONSE_DECODERS[method](data.get("result"))
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise RPCResponseError(
                message=f"Malformed {method} response: {e}",
                rpc_endpoint=self.endpoint,
            ) from e

    async def get_latest_anchor(self, abort_signal: Optional[AbortSignal] = None) -> LifetimeAnchor:
        response = await self._solana(
            "getLatestBlockhash",
            self._client.get_latest_blockhash(commitment=Confirmed),
            abort_signal,
        )
        if not response.value:
            raise BlockhashNotFoundError("Failed to get recent blockhash", rpc_endpoint=self.endpoint)

        anchor = LifetimeAnchor(
            blockhash=response.value.blockhash,
            last_valid_block_height=response.value.last_valid_block_height,
        )
        logger.debug(f"Fetched blockhash {anchor.blockhash} valid until height {anchor.last_valid_block_height}")
        return anchor

    async def get_recent_priority_fees(
        self,
        accounts: Sequence[Pubkey],
        abort_signal: Optional[AbortSignal] = None,
    ) -> List[int]:
        response = await self._solana(
            "getRecentPrioritizationFees",
            self._client.get_recent_prioritization_fees(list(accounts)),
            abort_signal,
        )
        return [entry.prioritization_fee for entry in response.value or []]

    async def get_recommended_priority_fee(
        self,
        accounts: Sequence[Pubkey],
        abort_signal: Optional[AbortSignal] = None,
    ) -> int:
        if self.cluster != Cluster.MAINNET:
            raise RPCMethodNotFoundError(
                message=f"getPriorityFeeEstimate is not available on {self.cluster.value}",
                rpc_endpoint=self.endpoint,
                method_name="getPriorityFeeEstimate",
            )
        params = {
            "accountKeys": [str(account) for account in accounts],
            "options": {"recommended": True},
        }
        return await self._json_rpc("getPriorityFeeEstimate", [params], abort_signal)

    async def simulate_compute_units(
        self,
        draft: DraftMessage,
        abort_signal: Optional[AbortSignal] = None,
    ) -> int:
        # Simulate at the maximum limit so the default per-instruction cap does not truncate the run.
        has_limit = any(
            identify_compute_budget_instruction(ix) == ComputeBudgetInstruction.SET_COMPUTE_UNIT_LIMIT
            for ix in draft.instructions
        )
        if not has_limit:
            draft = draft.append_instructions([create_set_compute_unit_limit_instruction(MAX_COMPUTE_UNIT_LIMIT)])

        message = draft.compile()
        unsigned = VersionedTransaction.populate(
            message,
            [Signature.default()] * message.header.num_required_signatures,
        )
        response = await self._solana(
            "simulateTransaction",
            self._client.simulate_transaction(unsigned, sig_verify=False, commitment=Confirmed),
            abort_signal,
        )

        result = response.value
        if result is None:
            raise TransactionSimulationError("Empty simulation response")
        if result.err is not None:
            raise TransactionSimulationError(
                message=f"Simulation failed: {result.err}",
                simulation_logs=list(result.logs or []),
            )
        if result.units_consumed is None:
            raise TransactionSimulationError("Simulation did not report consumed compute units")
        return result.units_consumed

    async def submit(
        self,
        transaction: SignedTransaction,
        commitment: CommitmentLevel = CommitmentLevel.CONFIRMED,
        abort_signal: Optional[AbortSignal] = None,
    ) -> Signature:
        opts = TxOpts(
            skip_preflight=self.skip_preflight,
            preflight_commitment=Commitment(commitment.value),
            max_retries=0,
        )
        signature = str(transaction.signature)
        try:
            response = await abortable(
                self._client.send_raw_transaction(transaction.wire, opts=opts),
                abort_signal,
            )
        except RPCException as e:
            if is_already_processed(e):
                raise TransactionAlreadyProcessedError(
                    message="Transaction already processed",
                    transaction_signature=signature,
                ) from e
            raise TransactionSendError(
                message=f"Transaction rejected: {e}",
                transaction_signature=signature,
            ) from e
        except (SolanaRpcException, httpx.HTTPError) as e:
            raise self._transport_error("sendTransaction", e) from e

        logger.info(f"Transaction sent: {response.value}")
        return response.value

    async def await_confirmation(
        self,
        signature: Signature,
        anchor: LifetimeAnchor,
        commitment: CommitmentLevel = CommitmentLevel.CONFIRMED,
        abort_signal: Optional[AbortSignal] = None,
    ) -> CommitmentLevel:
        while True:
            response = await self._solana(
                "getSignatureStatuses",
                self._client.get_signature_statuses([signature]),
                abort_signal,
            )
            status = response.value[0] if response.value else None

            if status is not None:
                if status.err is not None:
                    raise TransactionConfirmationError(
                        message=f"Transaction failed: {status.err}",
                        transaction_signature=str(signature),
                        transaction_error=str(status.err),
                    )
                reached = _commitment_of(status.confirmation_status)
                if reached is not None and commitment.is_reached_by(reached):
                    logger.info(f"Transaction {reached.value}: {signature}")
                    return reached

            height = await self._solana(
                "getBlockHeight",
                self._client.get_block_height(Commitment(commitment.value)),
                abort_signal,
            )
            if height.value > anchor.last_valid_block_height:
                raise TransactionExpiredError(
                    message=f"Block height {height.value} exceeded last valid height",
                    transaction_signature=str(signature),
                    last_valid_block_height=anchor.last_valid_block_height,
                )

            await abortable(asyncio.sleep(self.poll_interval), abort_signal)


# =============================================================================
# FACTORIES
# =============================================================================

def create_helius_devnet_client(
    api_key: Optional[str] = None,
    endpoint: Optional[str] = None,
    **kwargs: Any,
) -> HeliusRpcClient:
    return HeliusRpcClient(helius_endpoint(Cluster.DEVNET, api_key, endpoint), Cluster.DEVNET, **kwargs)


def create_helius_mainnet_client(
    api_key: Optional[str] = None,
    endpoint: Optional[str] = None,
    **kwargs: Any,
) -> HeliusRpcClient:
    return HeliusRpcClient(helius_endpoint(Cluster.MAINNET, api_key, endpoint), Cluster.MAINNET, **kwargs)


def create_client_from_settings(settings: HeliusSettings) -> HeliusRpcClient:
    endpoint = str(settings.endpoint) if settings.endpoint is not None else None
    api_key = None if endpoint is not None else settings.api_key.get_secret_value()
    return HeliusRpcClient(
        helius_endpoint(settings.cluster, api_key, endpoint),
        settings.cluster,
        request_timeout=settings.request_timeout,
        poll_interval=settings.poll_interval,
    )


__all__ = [
    "HELIUS_ENDPOINTS",
    "RESPONSE_DECODERS",
    "decode_priority_fee_estimate",
    "is_already_processed",
    "helius_endpoint",
    "LedgerClient",
    "HeliusRpcClient",
    "create_helius_devnet_client",
    "create_helius_mainnet_client",
    "create_client_from_settings",
]
