"""Data models for the ingestor module."""

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pumpfun_indexer.errors import DecodeError


@dataclass(frozen=True)
class SignatureEnvelope:
    """Minimal event carried on the bus from the ingester to the worker."""

    signature: str
    err: Any = None

    @classmethod
    def from_notification(cls, data: dict[str, Any]) -> "SignatureEnvelope":
        """Create an envelope from a logsNotification message.

        The payload looks like ``{"params": {"result": {"value":
        {"signature", "err", "logs"}}}}``.
        """
        try:
            value = data["params"]["result"]["value"]
            signature = value["signature"]
        except (KeyError, TypeError) as e:
            raise DecodeError(f"Malformed log notification: {e!r}") from e
        if not isinstance(signature, str) or not signature:
            raise DecodeError("Log notification has no signature")
        return cls(signature=signature, err=value.get("err"))

    @classmethod
    def from_json(cls, payload: str | bytes) -> "SignatureEnvelope":
        """Create an envelope from its bus representation."""
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise DecodeError(f"Invalid envelope JSON: {e}") from e
        if not isinstance(data, dict):
            raise DecodeError("Envelope must be a JSON object")
        signature = data.get("signature")
        if not isinstance(signature, str) or not signature:
            raise DecodeError("Envelope has no signature")
        return cls(signature=signature, err=data.get("err"))

    def to_json(self) -> str:
        return json.dumps({"signature": self.signature, "err": self.err})

    @property
    def failed(self) -> bool:
        return self.err is not None


@dataclass(frozen=True)
class AccountKey:
    """An account referenced by a transaction message."""

    address: str
    is_signer: bool = False
    is_writable: bool = False

    @classmethod
    def from_rpc(cls, data: Any) -> "AccountKey":
        """Create an AccountKey from a jsonParsed object or a legacy string key."""
        if isinstance(data, str):
            return cls(address=data)
        if isinstance(data, dict) and isinstance(data.get("pubkey"), str):
            return cls(
                address=data["pubkey"],
                is_signer=bool(data.get("signer", False)),
                is_writable=bool(data.get("writable", False)),
            )
        raise DecodeError(f"Unrecognised account key: {data!r}")


@dataclass(frozen=True)
class Instruction:
    """A top-level instruction of a transaction."""

    program_address: str
    raw_data: str | None = None
    parsed_data: Any = None

    @classmethod
    def from_rpc(cls, data: dict[str, Any], account_keys: tuple[AccountKey, ...]) -> "Instruction":
        """Create an Instruction from either a parsed or a compiled instruction."""
        program = data.get("programId")
        if program is None and "programIdIndex" in data:
            index = data["programIdIndex"]
            if not isinstance(index, int) or not 0 <= index < len(account_keys):
                raise DecodeError(f"Instruction program index out of range: {index!r}")
            program = account_keys[index].address
        if not isinstance(program, str):
            raise DecodeError("Instruction has no program address")
        raw = data.get("data")
        return cls(
            program_address=program,
            raw_data=raw if isinstance(raw, str) else None,
            parsed_data=data.get("parsed"),
        )


@dataclass(frozen=True)
class TokenBalance:
    """A pre- or post-transaction token balance entry."""

    account_index: int
    mint: str
    owner: str | None
    amount: Decimal
    decimals: int = 0

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> "TokenBalance":
        try:
            ui_amount = data["uiTokenAmount"]
            return cls(
                account_index=int(data["accountIndex"]),
                mint=str(data["mint"]),
                owner=data.get("owner"),
                amount=Decimal(str(ui_amount["amount"])),
                decimals=int(ui_amount.get("decimals", 0)),
            )
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise DecodeError(f"Malformed token balance: {e!r}") from e


@dataclass(frozen=True)
class TransactionMeta:
    """Execution metadata of a transaction."""

    err: Any = None
    fee_lamports: int = 0
    pre_balances: tuple[int, ...] = ()
    post_balances: tuple[int, ...] = ()
    pre_token_balances: tuple[TokenBalance, ...] = ()
    post_token_balances: tuple[TokenBalance, ...] = ()
    log_messages: tuple[str, ...] | None = None

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> "TransactionMeta":
        try:
            logs = data.get("logMessages")
            return cls(
                err=data.get("err"),
                fee_lamports=int(data.get("fee") or 0),
                pre_balances=tuple(int(b) for b in data.get("preBalances") or ()),
                post_balances=tuple(int(b) for b in data.get("postBalances") or ()),
                pre_token_balances=tuple(
                    TokenBalance.from_rpc(b) for b in data.get("preTokenBalances") or ()
                ),
                post_token_balances=tuple(
                    TokenBalance.from_rpc(b) for b in data.get("postTokenBalances") or ()
                ),
                log_messages=tuple(str(line) for line in logs) if logs is not None else None,
            )
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Malformed transaction meta: {e!r}") from e


@dataclass(frozen=True)
class MaterializedTransaction:
    """A fully resolved transaction as returned by ``getTransaction``."""

    slot: int
    block_time: datetime | None
    signatures: tuple[str, ...]
    account_keys: tuple[AccountKey, ...]
    instructions: tuple[Instruction, ...]
    meta: TransactionMeta | None = None

    @classmethod
    def from_rpc_result(cls, result: dict[str, Any]) -> "MaterializedTransaction":
        """Create a MaterializedTransaction from a getTransaction result."""
        if not isinstance(result, dict):
            raise DecodeError("Transaction result must be an object")
        try:
            message = result["transaction"]["message"]
            account_keys = tuple(AccountKey.from_rpc(k) for k in message["accountKeys"])
            instructions = tuple(
                Instruction.from_rpc(ix, account_keys) for ix in message.get("instructions") or ()
            )
            signatures = tuple(str(s) for s in result["transaction"].get("signatures") or ())
            slot = int(result["slot"])
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"Malformed transaction: {e!r}") from e

        block_time = None
        raw_block_time = result.get("blockTime")
        if raw_block_time is not None:
            try:
                block_time = datetime.fromtimestamp(int(raw_block_time), tz=UTC)
            except (TypeError, ValueError, OverflowError, OSError) as e:
                raise DecodeError(f"Invalid blockTime: {raw_block_time!r}") from e

        meta_data = result.get("meta")
        meta = TransactionMeta.from_rpc(meta_data) if isinstance(meta_data, dict) else None

        return cls(
            slot=slot,
            block_time=block_time,
            signatures=signatures,
            account_keys=account_keys,
            instructions=instructions,
            meta=meta,
        )

    @property
    def signature(self) -> str:
        """Return the transaction id (first signature)."""
        return self.signatures[0] if self.signatures else ""

    @property
    def signer(self) -> str | None:
        """Return the first signer account, if any."""
        for key in self.account_keys:
            if key.is_signer:
                return key.address
        return None

    @property
    def succeeded(self) -> bool:
        return self.meta is None or self.meta.err is None

    @property
    def log_messages(self) -> tuple[str, ...]:
        if self.meta is None or self.meta.log_messages is None:
            return ()
        return self.meta.log_messages

    def invokes_program(self, address: str) -> bool:
        """Return True if any top-level instruction targets ``address``."""
        return any(ix.program_address == address for ix in self.instructions)

    def account_index(self, address: str) -> int | None:
        for index, key in enumerate(self.account_keys):
            if key.address == address:
                return index
        return None

    def native_balance_change(self, index: int) -> tuple[int, int] | None:
        """Return ``(pre, post)`` native balances at an account position."""
        if self.meta is None:
            return None
        if index >= len(self.meta.pre_balances) or index >= len(self.meta.post_balances):
            return None
        return self.meta.pre_balances[index], self.meta.post_balances[index]
