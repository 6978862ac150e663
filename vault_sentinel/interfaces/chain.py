"""Chain client protocol — contract read/write abstraction."""
from typing import Any, Protocol, Sequence

from ..models import TxReceipt, UnsignedTransaction

Abi = Sequence[dict[str, Any]]


class ChainClient(Protocol):
    """Abstract interface for contract calls and unsigned-transaction building."""

    async def read(
        self, target: str, abi: Abi, method: str, args: Sequence[Any] = ()
    ) -> Any: ...

    async def write(
        self, target: str, abi: Abi, method: str, args: Sequence[Any] = ()
    ) -> TxReceipt: ...

    def build_unsigned_transaction(
        self, target: str, abi: Abi, method: str, args: Sequence[Any] = ()
    ) -> UnsignedTransaction: ...
