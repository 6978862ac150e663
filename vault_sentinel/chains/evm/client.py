"""EVM chain client — contract reads with retry, serialized operator writes,
and unsigned-transaction encoding."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import aiohttp
from eth_abi import encode as abi_encode
from eth_account import Account
from eth_utils import function_signature_to_4byte_selector, to_checksum_address, to_hex
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted

from ...config import ChainConfig
from ...errors import ChainReadError, ChainWriteError
from ...models import TxReceipt, UnsignedTransaction

logger = logging.getLogger(__name__)

Abi = Sequence[dict[str, Any]]


# ---------------------------------------------------------------------------
# ABI helpers
# ---------------------------------------------------------------------------


def _function_abi(abi: Abi, method: str, argc: int) -> dict[str, Any]:
    for entry in abi:
        if (
            entry.get("type", "function") == "function"
            and entry.get("name") == method
            and len(entry.get("inputs", [])) == argc
        ):
            return entry
    raise ValueError(f"ABI has no function {method} taking {argc} argument(s)")


def _normalize_args(fn_abi: dict[str, Any], args: Sequence[Any]) -> list[Any]:
    """Coerce boundary values (decimal strings, lowercase addresses) to ABI types."""
    normalized: list[Any] = []
    for spec, value in zip(fn_abi.get("inputs", []), args):
        abi_type = spec["type"]
        if abi_type.startswith(("uint", "int")) and not abi_type.endswith("]"):
            normalized.append(int(value))
        elif abi_type == "address":
            normalized.append(to_checksum_address(value))
        elif abi_type == "bool" and isinstance(value, str):
            normalized.append(value.strip().lower() == "true")
        else:
            normalized.append(value)
    return normalized


def encode_call(abi: Abi, method: str, args: Sequence[Any] = ()) -> str:
    """Encode selector + arguments as 0x-prefixed calldata. Pure."""
    fn_abi = _function_abi(abi, method, len(args))
    types = [spec["type"] for spec in fn_abi.get("inputs", [])]
    selector = function_signature_to_4byte_selector(f"{method}({','.join(types)})")
    return to_hex(selector + abi_encode(types, _normalize_args(fn_abi, args)))


def _revert_reason(error: Exception) -> str:
    return getattr(error, "message", None) or str(error) or "execution reverted"


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class EvmChainClient:
    """Async web3 client for one chain and one operator signer."""

    def __init__(self, config: ChainConfig, w3: AsyncWeb3 | None = None) -> None:
        self._config = config
        self.w3 = w3 or AsyncWeb3(
            AsyncHTTPProvider(
                config.rpc_url,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=config.rpc_timeout)},
            )
        )
        self._account = (
            Account.from_key(config.operator_private_key)
            if config.operator_private_key
            else None
        )
        self._signer_locks: dict[str, asyncio.Lock] = {}

    @property
    def operator_address(self) -> str | None:
        return self._account.address if self._account else None

    def _lock_for(self, signer: str) -> asyncio.Lock:
        lock = self._signer_locks.get(signer)
        if lock is None:
            lock = self._signer_locks[signer] = asyncio.Lock()
        return lock

    def _bind(self, target: str, abi: Abi, method: str, args: Sequence[Any]) -> Any:
        contract = self.w3.eth.contract(address=to_checksum_address(target), abi=list(abi))
        return contract.functions[method](*args)

    def _prepare(self, target: str, abi: Abi, method: str, args: Sequence[Any]) -> Any:
        fn_abi = _function_abi(abi, method, len(args))
        return self._bind(target, abi, method, _normalize_args(fn_abi, args))

    @staticmethod
    def _log_retry(target: str, method: str):
        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                "Read %s() on %s failed (attempt %d): %s, retrying",
                method,
                target,
                state.attempt_number,
                exc,
            )

        return _before_sleep

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read(
        self, target: str, abi: Abi, method: str, args: Sequence[Any] = ()
    ) -> Any:
        """Call a view function. Transient failures are retried with backoff."""
        try:
            call = self._prepare(target, abi, method, args)
        except (ValueError, TypeError) as e:
            raise ChainReadError(target, method, 0, str(e)) from e

        attempts_made = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._config.read_attempts),
                wait=wait_exponential(multiplier=self._config.read_backoff_seconds),
                retry=retry_if_not_exception_type(ContractLogicError),
                before_sleep=self._log_retry(target, method),
                reraise=True,
            ):
                attempts_made = attempt.retry_state.attempt_number
                with attempt:
                    result = await call.call()
        except Exception as e:
            raise ChainReadError(target, method, attempts_made, str(e)) from e

        logger.debug("Read %s() on %s -> %s", method, target, result)
        return result

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def write(
        self, target: str, abi: Abi, method: str, args: Sequence[Any] = ()
    ) -> TxReceipt:
        """Sign, submit and await one transaction. Never retried."""
        if self._account is None:
            raise ChainWriteError(target, method, "operator key is not configured")

        try:
            call = self._prepare(target, abi, method, args)
        except (ValueError, TypeError) as e:
            raise ChainWriteError(target, method, str(e)) from e

        sender = self._account.address
        async with self._lock_for(sender):
            try:
                nonce = await self.w3.eth.get_transaction_count(sender, "pending")
                tx = await call.build_transaction(
                    {"from": sender, "nonce": nonce, "chainId": self._config.chain_id}
                )
            except ContractLogicError as e:
                raise ChainWriteError(target, method, _revert_reason(e)) from e
            except Exception as e:
                raise ChainWriteError(
                    target, method, f"could not build transaction: {e}"
                ) from e

            try:
                signed = self._account.sign_transaction(tx)
            except Exception as e:
                raise ChainWriteError(target, method, f"signing failed: {e}") from e

            try:
                tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception as e:
                raise ChainWriteError(target, method, f"submission rejected: {e}") from e

            hash_hex = to_hex(tx_hash)
            logger.info("Submitted %s() on %s: %s (nonce %d)", method, target, hash_hex, nonce)

            try:
                receipt = await self.w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=self._config.receipt_timeout
                )
            except TimeExhausted as e:
                raise ChainWriteError(
                    target,
                    method,
                    f"not confirmed within {self._config.receipt_timeout}s",
                    tx_hash=hash_hex,
                ) from e
            except Exception as e:
                raise ChainWriteError(
                    target, method, f"confirmation failed: {e}", tx_hash=hash_hex
                ) from e

        block_number = receipt.get("blockNumber")
        if receipt["status"] != 1:
            reason = await self._replay_revert_reason(tx, block_number)
            raise ChainWriteError(target, method, reason, tx_hash=hash_hex)

        logger.info("Confirmed %s() on %s in block %s", method, target, block_number)
        return TxReceipt(hash=hash_hex, status="success", block_number=block_number)

    async def _replay_revert_reason(self, tx: dict[str, Any], block_number: Any) -> str:
        """Re-run a reverted transaction as eth_call to recover its reason."""
        call_tx = {k: tx[k] for k in ("from", "to", "data", "value") if k in tx}
        try:
            await self.w3.eth.call(call_tx, block_number)
        except ContractLogicError as e:
            return _revert_reason(e)
        except Exception as e:
            logger.debug("Revert replay failed: %s", e)
        return "transaction reverted"

    # ------------------------------------------------------------------
    # Unsigned transactions
    # ------------------------------------------------------------------

    def build_unsigned_transaction(
        self, target: str, abi: Abi, method: str, args: Sequence[Any] = ()
    ) -> UnsignedTransaction:
        """Encode a call for the end user's own signer. Never submitted."""
        return UnsignedTransaction(
            to=to_checksum_address(target),
            data=encode_call(abi, method, args),
            value="0",
        )
