"""
Transaction records for the Lumina wallet.

A record is created ``Pending`` by :meth:`Wallet.transfer` and moves to one
of the terminal states ``Confirmed`` or ``Failed`` when the ledger reports
it.  The id is content-derived:

    tx_id = SHA-256(canonical JSON of {from, to, amount, token, timestamp, sequence})

and the ECDSA signature covers the canonical JSON of
``{id, from, to, amount, token, timestamp}``.  Canonical JSON means sorted
keys, no whitespace, amounts as integer units.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum

from lumina_core import crypto_utils
from lumina_core.errors import CorruptStateError, InvalidAmount, SigningFailed, WalletStateError
from lumina_core.precision import check_units, format_amount


class TxStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self is not TxStatus.PENDING


class TxKind(str, Enum):
    TRANSFER = "transfer"      # outgoing, built and signed here
    INCOMING = "incoming"      # credited from a block
    CONTRACT = "contract"      # contract execution acknowledgement


def canonical_json(obj: dict) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


def compute_tx_id(
    from_address: str,
    to_address: str,
    amount: int,
    token: str,
    timestamp: int,
    sequence: int,
) -> str:
    body = {
        "from": from_address,
        "to": to_address,
        "amount": amount,
        "token": token,
        "timestamp": timestamp,
        "sequence": sequence,
    }
    return crypto_utils.sha256(canonical_json(body)).hex()


@dataclass
class TransactionRecord:
    tx_id: str
    from_address: str
    to_address: str
    amount: int
    token: str
    timestamp: int                   # milliseconds since the epoch
    status: TxStatus = TxStatus.PENDING
    signature: bytes = b""
    public_key: bytes = b""
    sequence: int = 0
    kind: TxKind = TxKind.TRANSFER
    reference: str = ""              # e.g. the interpreter's tx id for contract calls

    # ---- signing ----

    def signing_payload(self) -> bytes:
        return canonical_json({
            "id": self.tx_id,
            "from": self.from_address,
            "to": self.to_address,
            "amount": self.amount,
            "token": self.token,
            "timestamp": self.timestamp,
        })

    def sign(self, private_key: bytes, public_key: bytes) -> None:
        try:
            self.signature = crypto_utils.sign(private_key, self.signing_payload())
        except Exception as exc:
            raise SigningFailed(f"Could not sign transaction {self.tx_id}: {exc}") from exc
        self.public_key = public_key

    def verify_signature(self) -> bool:
        """Recompute the canonical encoding and check it against the sender key."""
        if not self.signature or not self.public_key:
            return False
        if crypto_utils.derive_address(self.public_key) != self.from_address:
            return False
        return crypto_utils.verify(self.public_key, self.signing_payload(), self.signature)

    # ---- lifecycle ----

    def transition(self, status: TxStatus) -> None:
        if self.status.is_terminal:
            raise WalletStateError(
                f"Transaction {self.tx_id} is already {self.status.value}"
            )
        self.status = status

    def copy(self) -> TransactionRecord:
        return TransactionRecord(**self.__dict__)

    # ---- rendering / serialisation ----

    def describe(self) -> str:
        return (
            f"Transaction {self.tx_id[:16]}: {format_amount(self.amount, self.token)} "
            f"from {self.from_address} to {self.to_address} [{self.status.value}]"
        )

    def to_dict(self) -> dict:
        return {
            "tx_id": self.tx_id,
            "from": self.from_address,
            "to": self.to_address,
            "amount": self.amount,
            "amount_display": format_amount(self.amount, self.token),
            "token": self.token,
            "timestamp": self.timestamp,
            "status": self.status.value,
            "signature": self.signature.hex(),
            "public_key": self.public_key.hex(),
            "sequence": self.sequence,
            "kind": self.kind.value,
            "reference": self.reference,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TransactionRecord:
        """Rebuild a record, raising ``CorruptStateError`` on anything malformed."""
        try:
            record = cls(
                tx_id=str(data["tx_id"]),
                from_address=str(data["from"]),
                to_address=str(data["to"]),
                amount=data["amount"],
                token=str(data["token"]),
                timestamp=int(data["timestamp"]),
                status=TxStatus(data["status"]),
                signature=bytes.fromhex(data.get("signature") or ""),
                public_key=bytes.fromhex(data.get("public_key") or ""),
                sequence=int(data.get("sequence", 0)),
                kind=TxKind(data.get("kind", TxKind.TRANSFER.value)),
                reference=str(data.get("reference") or ""),
            )
            check_units(record.amount)
        except (KeyError, ValueError, TypeError, InvalidAmount) as exc:
            raise CorruptStateError(f"Malformed transaction record: {exc}") from exc
        if not record.tx_id:
            raise CorruptStateError("Transaction record without id")
        return record

    def __repr__(self) -> str:
        return f"TransactionRecord({self.tx_id[:16]}, {self.status.value})"
