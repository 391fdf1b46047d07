from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, cast

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils.address import to_checksum_address
from web3 import HTTPProvider, Web3
from web3.types import TxParams

from intent_coordinator.blockchain.abis import load_abi
from intent_coordinator.errors import RpcError

log = logging.getLogger(__name__)

GAS_CAP = 2_000_000


@dataclass(frozen=True)
class TxResult:
    """Mined transaction, as the store needs it."""

    tx_hash: str
    block_number: int
    gas_used: int
    # gasUsed * effectiveGasPrice, wei
    gas_fee: int
    success: bool


def _hex(b: Any) -> str:
    if isinstance(b, (bytes, bytearray)):
        return "0x" + bytes(b).hex()
    s = b.hex() if hasattr(b, "hex") else str(b)
    return s if s.startswith("0x") else "0x" + s


def load_account(private_key: str | None) -> LocalAccount | None:
    if not private_key:
        return None
    acct = Account.from_key(private_key)
    log.info("Signer loaded: %s", acct.address)
    return cast(LocalAccount, acct)


class ChainClient:
    """Synchronous web3 access to one chain: contracts, reads, logs, signed sends.

    Every node-level failure surfaces as RpcError. Callers on the event loop
    go through ContractGateway, which moves these calls off the loop.
    """

    def __init__(
        self,
        name: str,
        rpc_url: str,
        chain_id: int,
        *,
        abi_dir: Any = None,
        request_timeout: float = 10.0,
    ):
        self.name = name
        self.rpc_url = rpc_url
        self.chain_id = int(chain_id)
        self.abi_dir = abi_dir
        self.request_timeout = request_timeout
        self.w3 = self._connect()
        self.contracts: dict[str, Any] = {}
        self._addresses: dict[str, str] = {}

    def _connect(self) -> Web3:
        return Web3(HTTPProvider(self.rpc_url, request_kwargs={"timeout": self.request_timeout}))

    def reconnect(self) -> None:
        """Fresh provider; contract objects are rebuilt against it."""
        log.info("Reconnecting %s chain (%s)", self.name, self.rpc_url)
        self.w3 = self._connect()
        addresses = dict(self._addresses)
        self.contracts = {}
        for name, addr in addresses.items():
            self.register_contract(name, addr)

    # ----------------- контракты -----------------

    def register_contract(self, name: str, address: str, abi: list[dict[str, Any]] | None = None) -> Any:
        addr = to_checksum_address(address)
        c = self.w3.eth.contract(address=addr, abi=abi or load_abi(name, self.abi_dir))
        self.contracts[name] = c
        self._addresses[name] = addr
        log.info("Contract %s on %s at %s", name, self.name, addr)
        return c

    def get_contract(self, name: str) -> Any:
        c = self.contracts.get(name)
        if not c:
            raise RuntimeError(f"contract {name} not loaded on {self.name}")
        return c

    # ----------------- чтение -----------------

    def block_number(self) -> int:
        try:
            return int(self.w3.eth.block_number)
        except Exception as e:
            raise RpcError(f"{self.name}: block_number failed: {e}") from e

    def call(self, contract: str, method: str, *args: Any) -> Any:
        c = self.get_contract(contract)
        try:
            return getattr(c.functions, method)(*args).call()
        except Exception as e:
            raise RpcError(f"{self.name}: {contract}.{method} failed: {e}") from e

    def get_logs(self, contract: str, event: str, from_block: int, to_block: int) -> list[Any]:
        c = self.get_contract(contract)
        evt = getattr(c.events, event)
        try:
            return list(evt.get_logs(from_block=from_block, to_block=to_block))
        except Exception as e:
            raise RpcError(f"{self.name}: {contract}.{event} get_logs failed: {e}") from e

    # ----------------- отправка -----------------

    def _tx(self, sender: str) -> TxParams:
        return {"chainId": self.chain_id, "from": to_checksum_address(sender), "value": 0}

    def _fill_tx_defaults(self, tx: dict[str, Any]) -> dict[str, Any]:
        # nonce и gas заполняем только если не заданы
        if "chainId" not in tx:
            tx["chainId"] = self.chain_id
        if "nonce" not in tx:
            tx["nonce"] = self.w3.eth.get_transaction_count(to_checksum_address(tx["from"]), "pending")
        if "gas" not in tx:
            try:
                allowed = {
                    k: v
                    for k, v in tx.items()
                    if v is not None and k in {"from", "to", "data", "value", "nonce", "chainId"}
                }
                tx["gas"] = min(int(self.w3.eth.estimate_gas(cast(TxParams, allowed))), GAS_CAP)
            except Exception as e:
                log.debug("estimate_gas failed, using cap: %s", e, exc_info=True)
                tx["gas"] = GAS_CAP
        if "gasPrice" not in tx and "maxFeePerGas" not in tx and "maxPriorityFeePerGas" not in tx:
            tx["gasPrice"] = int(self.w3.eth.gas_price)
        return tx

    def send_transaction(
        self,
        contract: str,
        method: str,
        args: tuple[Any, ...],
        signer: LocalAccount,
        *,
        receipt_timeout: float = 120.0,
    ) -> TxResult:
        """Build, sign with ``signer``, broadcast and wait for the receipt."""
        c = self.get_contract(contract)
        try:
            built = getattr(c.functions, method)(*args).build_transaction(self._tx(signer.address))
            tx = self._fill_tx_defaults(dict(built))
            signed = signer.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            log.info("Sent %s.%s on %s: %s", contract, method, self.name, _hex(tx_hash))
            rcpt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=receipt_timeout)
        except Exception as e:
            raise RpcError(f"{self.name}: {contract}.{method} send failed: {e}") from e

        gas_used = int(rcpt.get("gasUsed") or 0)
        price = int(rcpt.get("effectiveGasPrice") or tx.get("gasPrice") or 0)
        return TxResult(
            tx_hash=_hex(rcpt.get("transactionHash") or tx_hash),
            block_number=int(rcpt.get("blockNumber") or 0),
            gas_used=gas_used,
            gas_fee=gas_used * price,
            success=int(rcpt.get("status", 1)) == 1,
        )


def keccak(data: bytes) -> bytes:
    return bytes(Web3.keccak(data))
