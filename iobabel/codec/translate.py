"""
iobabel Codec - Ethereum Views

Translates native block metas, action infos, receipts and logs into the
Ethereum JSON-RPC shapes expected by web3.py, ethers.js and friends.
Views are computed on demand and never stored.

Native field names follow the chain's JSON gateway (camelCase); byte
fields have already been decoded into ``bytes`` by the chain client.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..constants import (
    BLOCK_NONCE,
    DEFAULT_BLOCK_GAS_LIMIT,
    EMPTY_BLOOM,
    EMPTY_TRANSACTIONS_ROOT,
    EMPTY_UNCLES_HASH,
    GENESIS_HEIGHT,
    PLACEHOLDER_DIFFICULTY,
    PLACEHOLDER_SIGNATURE,
    PLACEHOLDER_STEP,
    PLACEHOLDER_TOTAL_DIFFICULTY,
)
from ..exceptions import DecodeError
from .address import sender_from_public_key, to_compat_address
from .encoding import bytes_to_hex, hex_to_number, normalize_hash, number_to_hex, split_signature

_FRACTION_RE = re.compile(r"\.\d+")


def _safe_int(val: Any, default: int = 0) -> int:
    """Coerce a gateway quantity (int or numeric string) to int."""
    if val is None or val == "":
        return default
    try:
        return hex_to_number(val)
    except DecodeError:
        return default


def _safe_timestamp(val: Any) -> int:
    """Coerce a timestamp value to integer epoch seconds."""
    if val is None:
        return 0
    if isinstance(val, dict):
        return _safe_int(val.get("seconds"))
    if isinstance(val, (int, float)):
        return int(val)
    if isinstance(val, str):
        try:
            return int(val)
        except ValueError:
            pass
        try:
            # fromisoformat rejects nanosecond fractions and a bare 'Z' on older interpreters
            text = _FRACTION_RE.sub("", val).replace("Z", "+00:00")
            return int(datetime.fromisoformat(text).timestamp())
        except ValueError:
            return 0
    return 0


def _optional_hash(value: Any) -> Optional[str]:
    if value is None or value == "" or value == b"":
        return None
    return normalize_hash(value)


# ─── Blocks ───────────────────────────────────────────────────────────────────

def translate_block_header(meta: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build the Ethereum block header fields from a native block meta.

    Fields without a native analogue carry fixed placeholder values.
    """
    height = _safe_int(meta.get("height"))
    gas_limit = _safe_int(meta.get("gasLimit")) or DEFAULT_BLOCK_GAS_LIMIT
    gas_used = _safe_int(meta.get("gasUsed"))

    if height == GENESIS_HEIGHT or not meta.get("txRoot"):
        transactions_root = EMPTY_TRANSACTIONS_ROOT
    else:
        transactions_root = normalize_hash(meta["txRoot"])

    return {
        "number": number_to_hex(height),
        "hash": normalize_hash(meta.get("hash", "")),
        "parentHash": normalize_hash(meta.get("previousBlockHash", "")),
        "nonce": BLOCK_NONCE,
        "sha3Uncles": EMPTY_UNCLES_HASH,
        "logsBloom": EMPTY_BLOOM,
        "transactionsRoot": transactions_root,
        "stateRoot": normalize_hash(meta.get("deltaStateDigest", "")),
        "receiptsRoot": normalize_hash(meta.get("receiptRoot", "")),
        "miner": to_compat_address(meta.get("producerAddress")),
        "difficulty": number_to_hex(PLACEHOLDER_DIFFICULTY),
        "totalDifficulty": number_to_hex(PLACEHOLDER_TOTAL_DIFFICULTY),
        "step": PLACEHOLDER_STEP,
        "signature": PLACEHOLDER_SIGNATURE,
        "size": number_to_hex(_safe_int(meta.get("numActions"))),
        "extraData": "0x",
        "gasLimit": number_to_hex(gas_limit),
        "gasUsed": number_to_hex(gas_used),
        "timestamp": number_to_hex(_safe_timestamp(meta.get("timestamp"))),
    }


def translate_block(
    meta: Dict[str, Any],
    actions: List[Dict[str, Any]],
    full_detail: bool = False,
) -> Dict[str, Any]:
    """
    Build a full Ethereum block from its meta and the block's actions.

    Args:
        meta: Native block meta
        actions: Native action infos belonging to the block, in block order
        full_detail: Expand transactions into views instead of hashes
    """
    block = translate_block_header(meta)
    if full_detail:
        transactions = [translate_action(info, index) for index, info in enumerate(actions)]
    else:
        transactions = [normalize_hash(info.get("actHash", "")) for info in actions]
    block["transactions"] = transactions
    block["uncles"] = []
    return block


# ─── Transactions ─────────────────────────────────────────────────────────────

def _sender(info: Dict[str, Any]) -> str:
    public_key = (info.get("action") or {}).get("senderPubKey")
    if public_key:
        try:
            return sender_from_public_key(public_key)
        except DecodeError:
            pass
    return to_compat_address(info.get("sender"))


def translate_action(info: Dict[str, Any], index: Optional[int] = None) -> Dict[str, Any]:
    """
    Translate a native action info into an Ethereum transaction view.

    Exactly one of ``transfer`` / ``execution`` is populated on the core.
    An execution without a contract is a deployment: ``to`` is ``None``
    and ``creates`` is left for the caller to back-fill from the receipt.
    """
    action = info.get("action") or {}
    core = action.get("core") or {}
    transfer = core.get("transfer")
    execution = core.get("execution")

    to = None
    value = "0x0"
    data = "0x"
    creation = False
    if transfer is not None:
        to = to_compat_address(transfer.get("recipient"))
        value = number_to_hex(_safe_int(transfer.get("amount")))
        data = bytes_to_hex(transfer.get("payload"))
    elif execution is not None:
        contract = execution.get("contract")
        if contract:
            to = to_compat_address(contract)
        else:
            creation = True
        value = number_to_hex(_safe_int(execution.get("amount")))
        data = bytes_to_hex(execution.get("data"))

    try:
        r, s, v = split_signature(action.get("signature") or b"")
    except DecodeError:
        r = s = v = "0x0"

    block_height = _safe_int(info.get("blkHeight"))
    pending = block_height == GENESIS_HEIGHT
    if index is None:
        index = _safe_int(info.get("index"))

    view = {
        "hash": normalize_hash(info.get("actHash", "")),
        "nonce": number_to_hex(_safe_int(core.get("nonce"))),
        "blockHash": None if pending else _optional_hash(info.get("blkHash")),
        "blockNumber": None if pending else number_to_hex(block_height),
        "transactionIndex": number_to_hex(index),
        "from": _sender(info),
        "to": to,
        "value": value,
        "gas": number_to_hex(_safe_int(core.get("gasLimit"))),
        "gasPrice": number_to_hex(_safe_int(core.get("gasPrice"))),
        "input": data,
        "r": r,
        "s": s,
        "v": v,
    }
    if creation:
        view["creates"] = None
    return view


# ─── Receipts and logs ────────────────────────────────────────────────────────

def translate_log(
    log: Dict[str, Any],
    block_hash: Optional[str] = None,
    transaction_hash: Optional[str] = None,
    transaction_index: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Translate a native log entry.

    Receipt logs lack their parent's block hash and index, so callers
    may back-fill them.
    """
    if transaction_index is None:
        transaction_index = number_to_hex(_safe_int(log.get("txIndex")))
    return {
        "blockHash": block_hash or _optional_hash(log.get("blkHash")),
        "transactionHash": transaction_hash or _optional_hash(log.get("actHash")),
        "transactionIndex": transaction_index,
        "logIndex": number_to_hex(_safe_int(log.get("index"))),
        "blockNumber": number_to_hex(_safe_int(log.get("blkHeight"))),
        "address": to_compat_address(log.get("contractAddress")),
        "data": bytes_to_hex(log.get("data")),
        "topics": [bytes_to_hex(topic) for topic in log.get("topics") or []],
        "removed": False,
    }


def translate_receipt(receipt_info: Dict[str, Any], transaction: Dict[str, Any]) -> Dict[str, Any]:
    """
    Translate a native receipt, joined with its transaction view.

    Receipts alone carry neither sender nor recipient.
    """
    receipt = receipt_info.get("receipt") or {}
    block_hash = _optional_hash(receipt_info.get("blkHash")) or transaction.get("blockHash")
    transaction_hash = _optional_hash(receipt.get("actHash")) or transaction["hash"]
    transaction_index = transaction["transactionIndex"]
    gas_used = number_to_hex(_safe_int(receipt.get("gasConsumed")))

    contract_address = receipt.get("contractAddress")
    logs = [
        translate_log(
            log,
            block_hash=block_hash,
            transaction_hash=transaction_hash,
            transaction_index=transaction_index,
        )
        for log in receipt.get("logs") or []
    ]

    return {
        "transactionHash": transaction_hash,
        "transactionIndex": transaction_index,
        "blockHash": block_hash,
        "blockNumber": number_to_hex(_safe_int(receipt.get("blkHeight"))),
        "from": transaction["from"],
        "to": transaction["to"],
        "cumulativeGasUsed": gas_used,
        "gasUsed": gas_used,
        "effectiveGasPrice": transaction["gasPrice"],
        "contractAddress": to_compat_address(contract_address) if contract_address else None,
        "logs": logs,
        "logsBloom": EMPTY_BLOOM,
        "status": "0x1" if _safe_int(receipt.get("status")) == 1 else "0x0",
    }
