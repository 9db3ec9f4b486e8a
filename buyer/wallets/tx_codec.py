"""
Decode the checkout service's serializedTransaction into a signable tx dict.

EVM envelopes handled:
  legacy     rlp([nonce, gasPrice, gas, to, value, data])            (pre-EIP-155)
             rlp([nonce, gasPrice, gas, to, value, data, chainId, 0, 0])
  0x01       EIP-2930: 0x01 || rlp([chainId, nonce, gasPrice, gas, to, value, data, accessList])
  0x02       EIP-1559: 0x02 || rlp([chainId, nonce, maxPriorityFee, maxFee, gas, to, value, data, accessList])

Signature fields, if present, are dropped: the payload is re-signed locally.
"""

from typing import List

import rlp
from eth_utils import decode_hex, encode_hex, to_checksum_address

from buyer.errors import ValidationError

TYPE_ACCESS_LIST = 0x01
TYPE_DYNAMIC_FEE = 0x02


def _int(b: bytes) -> int:
    return int.from_bytes(b, "big") if b else 0


def _to(b: bytes):
    return to_checksum_address(b) if b else None


def _access_list(items) -> List[dict]:
    out = []
    for entry in items or []:
        address, keys = entry[0], entry[1]
        out.append({
            "address": to_checksum_address(address),
            "storageKeys": [encode_hex(k) for k in keys],
        })
    return out


def decode_unsigned_transaction(serialized: str) -> dict:
    """Hex payload -> web3-style tx dict. Raises ValidationError on garbage."""
    if not serialized:
        raise ValidationError("empty serialized transaction")
    try:
        raw = decode_hex(serialized)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"serialized transaction is not hex: {e}")
    if not raw:
        raise ValidationError("empty serialized transaction")

    try:
        if raw[0] == TYPE_DYNAMIC_FEE:
            return _decode_dynamic_fee(_fields(raw[1:]))
        if raw[0] == TYPE_ACCESS_LIST:
            return _decode_access_list(_fields(raw[1:]))
        if raw[0] >= 0xC0:
            return _decode_legacy(_fields(raw))
    except rlp.DecodingError as e:
        raise ValidationError(f"serialized transaction is not valid RLP: {e}")
    raise ValidationError(f"unsupported transaction envelope 0x{raw[0]:02x}")


def _fields(payload: bytes) -> list:
    fields = rlp.decode(payload)
    if not isinstance(fields, (list, tuple)):
        raise ValidationError("transaction payload is not an RLP list")
    return list(fields)


def _base(nonce, gas, to, value, data) -> dict:
    tx = {
        "nonce": _int(nonce),
        "gas": _int(gas),
        "value": _int(value),
        "data": encode_hex(data),
    }
    dest = _to(to)
    if dest:
        tx["to"] = dest
    return tx


def _decode_dynamic_fee(fields) -> dict:
    if len(fields) not in (9, 12):
        raise ValidationError(f"EIP-1559 payload has {len(fields)} fields")
    chain_id, nonce, prio, max_fee, gas, to, value, data, access = fields[:9]
    tx = _base(nonce, gas, to, value, data)
    tx.update({
        "type": TYPE_DYNAMIC_FEE,
        "chainId": _int(chain_id),
        "maxPriorityFeePerGas": _int(prio),
        "maxFeePerGas": _int(max_fee),
        "accessList": _access_list(access),
    })
    return tx


def _decode_access_list(fields) -> dict:
    if len(fields) not in (8, 11):
        raise ValidationError(f"EIP-2930 payload has {len(fields)} fields")
    chain_id, nonce, gas_price, gas, to, value, data, access = fields[:8]
    tx = _base(nonce, gas, to, value, data)
    tx.update({
        "type": TYPE_ACCESS_LIST,
        "chainId": _int(chain_id),
        "gasPrice": _int(gas_price),
        "accessList": _access_list(access),
    })
    return tx


def _decode_legacy(fields) -> dict:
    if len(fields) not in (6, 9):
        raise ValidationError(f"legacy payload has {len(fields)} fields")
    nonce, gas_price, gas, to, value, data = fields[:6]
    tx = _base(nonce, gas, to, value, data)
    tx["gasPrice"] = _int(gas_price)
    if len(fields) == 9:
        v, r, s = (_int(x) for x in fields[6:9])
        if r == 0 and s == 0:
            # unsigned EIP-155: v slot carries the chain id
            tx["chainId"] = v
        elif v >= 35:
            tx["chainId"] = (v - 35) // 2
    return tx
