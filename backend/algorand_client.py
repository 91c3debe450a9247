import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Protocol

from algosdk import account, encoding, logic, mnemonic, transaction
from algosdk.error import AlgodHTTPError
from algosdk.v2client import algod

import config
from errors import (
    AlreadyStopped,
    AlreadyVoted,
    LedgerRejected,
    LedgerUnavailable,
    NotAuthorized,
    VotingClosed,
)
from models import normalize_wallet, to_unix_seconds
from smart_contract import (
    AUTHORIZE_BATCH_SIZE,
    MAX_CANDIDATES,
    MAX_NAME_BYTES,
    VOTED,
    compile_contract,
    state_schema,
)

logger = logging.getLogger(__name__)

APP_MIN_BALANCE = 100_000
# 2500 + 400 * (32 byte address key + 1 byte flag)
BOX_MIN_BALANCE = 15_700
MAX_GROUP_SIZE = 16
_REJECTED_HTTP_CODES = {400, 401, 403, 404}


@dataclass(frozen=True)
class Receipt:
    tx_ids: tuple[str, ...]
    confirmed_round: int

    def to_dict(self) -> dict[str, Any]:
        return {"tx_ids": list(self.tx_ids), "confirmed_round": self.confirmed_round}


@dataclass(frozen=True)
class PendingTransaction:
    tx_ids: tuple[str, ...]


@dataclass(frozen=True)
class Confirmed:
    receipt: Receipt
    details: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class Failed:
    tx_ids: tuple[str, ...]
    reason: str


class LedgerClient(Protocol):
    def deploy_election(
        self, candidate_names: list[str], start_time: datetime, end_time: datetime
    ) -> tuple[str, Receipt]: ...

    def authorize_addresses(self, contract_address: str, addresses: Iterable[str]) -> Receipt: ...

    def cast_vote(self, contract_address: str, candidate_index: int, signer_private_key: str) -> Receipt: ...

    def get_tally(self, contract_address: str) -> list[tuple[str, int]]: ...

    def is_active(self, contract_address: str) -> bool: ...

    def stop_election(self, contract_address: str) -> Receipt: ...

    def has_voted(self, contract_address: str, wallet: str) -> bool: ...


def _u64(value: int) -> bytes:
    return int(value).to_bytes(8, "big")


def _app_id(contract_address: str) -> int:
    try:
        app_id = int(contract_address)
    except (TypeError, ValueError) as exc:
        raise LedgerRejected(f"Invalid contract address {contract_address!r}") from exc
    if app_id <= 0:
        raise LedgerRejected(f"Invalid contract address {contract_address!r}")
    return app_id


def _chunks(items: list, size: int) -> list[list]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class AlgorandLedgerClient:
    """Drives one Algorand application per election with the service account.

    Mutating calls go through submit() and wait(); the public operations
    combine both and never retry on their own.
    """

    def __init__(self, algod_client: algod.AlgodClient, private_key: str, timeout_rounds: int = 12) -> None:
        self.algod = algod_client
        self.private_key = private_key
        self.sender = account.address_from_private_key(private_key)
        self.timeout_rounds = timeout_rounds
        self._programs: tuple[bytes, bytes] | None = None

    @classmethod
    def from_env(cls) -> "AlgorandLedgerClient":
        if not config.ALGOD_ADDRESS:
            raise RuntimeError("ALGORAND_ALGOD_ADDRESS is required")
        if not config.SERVICE_MNEMONIC:
            raise RuntimeError("ALGORAND_SERVICE_MNEMONIC is required")
        headers = {"X-API-Key": config.ALGOD_TOKEN} if config.ALGOD_TOKEN else {}
        client = algod.AlgodClient(config.ALGOD_TOKEN, config.ALGOD_ADDRESS, headers=headers)
        return cls(
            client,
            mnemonic.to_private_key(config.SERVICE_MNEMONIC),
            timeout_rounds=config.TX_TIMEOUT_ROUNDS,
        )

    def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except AlgodHTTPError as exc:
            if exc.code in _REJECTED_HTTP_CODES:
                raise LedgerRejected(f"Ledger rejected request: {exc}") from exc
            raise LedgerUnavailable(f"Ledger node error: {exc}") from exc
        except OSError as exc:
            raise LedgerUnavailable(f"Ledger node unreachable: {exc}") from exc

    def submit(self, txns: list[transaction.Transaction], signer_key: str | None = None) -> PendingTransaction:
        if len(txns) > 1:
            txns = transaction.assign_group_id(txns)
        key = signer_key or self.private_key
        signed = [txn.sign(key) for txn in txns]
        self._call(self.algod.send_transactions, signed)
        tx_ids = tuple(txn.get_txid() for txn in txns)
        logger.info("Submitted %d transaction(s): %s", len(tx_ids), ", ".join(tx_ids))
        return PendingTransaction(tx_ids=tx_ids)

    def wait(
        self, pending: PendingTransaction, timeout_rounds: int | None = None
    ) -> Confirmed | Failed | PendingTransaction:
        timeout = timeout_rounds if timeout_rounds is not None else self.timeout_rounds
        start_round = self._call(self.algod.status)["last-round"] + 1
        current_round = start_round
        while current_round < start_round + timeout:
            infos = [self._call(self.algod.pending_transaction_info, tx_id) for tx_id in pending.tx_ids]
            for info in infos:
                if info.get("pool-error"):
                    return Failed(tx_ids=pending.tx_ids, reason=info["pool-error"])
            if all(int(info.get("confirmed-round", 0)) > 0 for info in infos):
                confirmed_round = max(int(info["confirmed-round"]) for info in infos)
                return Confirmed(receipt=Receipt(pending.tx_ids, confirmed_round), details=tuple(infos))
            self._call(self.algod.status_after_block, current_round)
            current_round += 1
        logger.warning("Transactions %s still pending after %d rounds", ", ".join(pending.tx_ids), timeout)
        return pending

    def _finalize(self, pending: PendingTransaction, operation: str, **context: Any) -> Confirmed:
        outcome = self.wait(pending)
        if isinstance(outcome, Failed):
            raise LedgerRejected(f"{operation} rejected: {outcome.reason}", tx_ids=list(outcome.tx_ids), **context)
        if isinstance(outcome, PendingTransaction):
            raise LedgerUnavailable(
                f"{operation} not confirmed after {self.timeout_rounds} rounds; it may still finalize",
                tx_ids=list(outcome.tx_ids),
                **context,
            )
        return outcome

    def _compiled_programs(self) -> tuple[bytes, bytes]:
        if self._programs is None:
            approval_teal, clear_teal = compile_contract()
            approval = self._call(self.algod.compile, approval_teal)
            clear = self._call(self.algod.compile, clear_teal)
            self._programs = (base64.b64decode(approval["result"]), base64.b64decode(clear["result"]))
        return self._programs

    @staticmethod
    def _decode_global_state(app_state: list[dict[str, Any]]) -> dict[bytes, int | bytes]:
        decoded: dict[bytes, int | bytes] = {}
        for entry in app_state:
            key = base64.b64decode(entry["key"])
            value = entry["value"]
            if value["type"] == 2:
                decoded[key] = int(value.get("uint", 0))
            elif value["type"] == 1:
                decoded[key] = base64.b64decode(value.get("bytes", ""))
        return decoded

    def _global_state(self, app_id: int) -> dict[bytes, int | bytes]:
        app_info = self._call(self.algod.application_info, app_id)
        return self._decode_global_state(app_info["params"].get("global-state", []))

    def _latest_timestamp(self) -> int:
        last_round = self._call(self.algod.status)["last-round"]
        return int(self._call(self.algod.block_info, last_round)["block"]["ts"])

    def _voter_flag(self, app_id: int, wallet: str) -> str | None:
        wallet = normalize_wallet(wallet)
        if not encoding.is_valid_address(wallet):
            raise LedgerRejected(f"Invalid wallet address: {wallet}", wallet=wallet)
        key = encoding.decode_address(wallet)
        try:
            box = self.algod.application_box_by_name(app_id, key)
        except AlgodHTTPError as exc:
            if exc.code == 404:
                return None
            raise LedgerUnavailable(f"Ledger node error: {exc}") from exc
        except OSError as exc:
            raise LedgerUnavailable(f"Ledger node unreachable: {exc}") from exc
        return base64.b64decode(box["value"]).hex()

    def deploy_election(
        self, candidate_names: list[str], start_time: datetime, end_time: datetime
    ) -> tuple[str, Receipt]:
        encoded = [name.encode("utf-8") for name in candidate_names]
        if len(encoded) > MAX_CANDIDATES:
            raise LedgerRejected(f"At most {MAX_CANDIDATES} candidates fit in one election contract")
        if any(len(name) > MAX_NAME_BYTES for name in encoded):
            raise LedgerRejected(f"Candidate names are limited to {MAX_NAME_BYTES} bytes")

        approval_program, clear_program = self._compiled_programs()
        num_uints, num_byte_slices = state_schema(len(encoded))
        sp = self._call(self.algod.suggested_params)
        txn = transaction.ApplicationCreateTxn(
            sender=self.sender,
            sp=sp,
            on_complete=transaction.OnComplete.NoOpOC,
            approval_program=approval_program,
            clear_program=clear_program,
            global_schema=transaction.StateSchema(num_uints=num_uints, num_byte_slices=num_byte_slices),
            local_schema=transaction.StateSchema(0, 0),
            app_args=[_u64(to_unix_seconds(start_time)), _u64(to_unix_seconds(end_time)), *encoded],
        )
        confirmed = self._finalize(self.submit([txn]), "deploy_election")
        app_id = int(confirmed.details[0].get("application-index", 0))
        if app_id <= 0:
            raise LedgerRejected("Deployment confirmed without an application id", tx_ids=list(confirmed.receipt.tx_ids))
        logger.info("Deployed election contract %s in round %s", app_id, confirmed.receipt.confirmed_round)
        return str(app_id), confirmed.receipt

    def authorize_addresses(self, contract_address: str, addresses: Iterable[str]) -> Receipt:
        app_id = _app_id(contract_address)
        wallets = sorted({normalize_wallet(a) for a in addresses})
        if not wallets:
            raise LedgerRejected("No addresses to authorize", contract_address=contract_address)
        invalid = [w for w in wallets if not encoding.is_valid_address(w)]
        if invalid:
            raise LedgerRejected(
                f"Invalid wallet addresses: {', '.join(invalid)}", contract_address=contract_address
            )

        app_address = logic.get_application_address(app_id)
        batches = _chunks([encoding.decode_address(w) for w in wallets], AUTHORIZE_BATCH_SIZE)
        tx_ids: list[str] = []
        confirmed_round = 0
        # one funding payment plus up to 15 authorize calls per atomic group
        for group in _chunks(batches, MAX_GROUP_SIZE - 1):
            box_count = sum(len(batch) for batch in group)
            app_account = self._call(self.algod.account_info, app_address)
            min_balance = max(int(app_account.get("min-balance", 0)), APP_MIN_BALANCE)
            funding = max(0, min_balance + box_count * BOX_MIN_BALANCE - int(app_account.get("amount", 0)))

            sp = self._call(self.algod.suggested_params)
            txns: list[transaction.Transaction] = [
                transaction.PaymentTxn(sender=self.sender, sp=sp, receiver=app_address, amt=funding)
            ]
            for batch in group:
                txns.append(
                    transaction.ApplicationNoOpTxn(
                        sender=self.sender,
                        sp=sp,
                        index=app_id,
                        app_args=[b"authorize", *batch],
                        boxes=[(app_id, key) for key in batch],
                    )
                )
            confirmed = self._finalize(self.submit(txns), "authorize_addresses", contract_address=contract_address)
            tx_ids.extend(confirmed.receipt.tx_ids)
            confirmed_round = max(confirmed_round, confirmed.receipt.confirmed_round)
        logger.info("Authorized %d wallet(s) on contract %s", len(wallets), contract_address)
        return Receipt(tuple(tx_ids), confirmed_round)

    def cast_vote(self, contract_address: str, candidate_index: int, signer_private_key: str) -> Receipt:
        app_id = _app_id(contract_address)
        voter = account.address_from_private_key(signer_private_key)
        state = self._global_state(app_id)
        if not 0 <= candidate_index < int(state.get(b"candidates", 0)):
            raise LedgerRejected(f"Candidate index {candidate_index} out of range", contract_address=contract_address)
        now = self._latest_timestamp()
        if state.get(b"active") != 1 or not int(state.get(b"start", 0)) <= now < int(state.get(b"end", 0)):
            raise VotingClosed("Voting is not open on this election", contract_address=contract_address)
        flag = self._voter_flag(app_id, voter)
        if flag is None:
            raise NotAuthorized("Wallet is not authorized to vote", contract_address=contract_address, wallet=voter)
        if flag == VOTED:
            raise AlreadyVoted("Wallet has already voted", contract_address=contract_address, wallet=voter)

        sp = self._call(self.algod.suggested_params)
        txn = transaction.ApplicationNoOpTxn(
            sender=voter,
            sp=sp,
            index=app_id,
            app_args=[b"vote", _u64(candidate_index)],
            boxes=[(app_id, encoding.decode_address(voter))],
        )
        pending = self.submit([txn], signer_key=signer_private_key)
        return self._finalize(pending, "cast_vote", contract_address=contract_address).receipt

    def get_tally(self, contract_address: str) -> list[tuple[str, int]]:
        state = self._global_state(_app_id(contract_address))
        tally = []
        for index in range(int(state.get(b"candidates", 0))):
            name = state.get(b"name_" + _u64(index), b"")
            count = state.get(b"count_" + _u64(index), 0)
            tally.append((bytes(name).decode("utf-8"), int(count)))
        return tally

    def is_active(self, contract_address: str) -> bool:
        state = self._global_state(_app_id(contract_address))
        if state.get(b"active") != 1:
            return False
        return self._latest_timestamp() < int(state.get(b"end", 0))

    def stop_election(self, contract_address: str) -> Receipt:
        app_id = _app_id(contract_address)
        state = self._global_state(app_id)
        admin = state.get(b"admin")
        if not isinstance(admin, bytes) or encoding.encode_address(admin) != self.sender:
            raise NotAuthorized("Only the deploying admin can stop this election", contract_address=contract_address)
        if state.get(b"active") != 1:
            raise AlreadyStopped("Election is already stopped", contract_address=contract_address)
        sp = self._call(self.algod.suggested_params)
        txn = transaction.ApplicationNoOpTxn(sender=self.sender, sp=sp, index=app_id, app_args=[b"stop"])
        return self._finalize(self.submit([txn]), "stop_election", contract_address=contract_address).receipt

    def has_voted(self, contract_address: str, wallet: str) -> bool:
        return self._voter_flag(_app_id(contract_address), wallet) == VOTED

    def is_authorized(self, contract_address: str, wallet: str) -> bool:
        return self._voter_flag(_app_id(contract_address), wallet) is not None
