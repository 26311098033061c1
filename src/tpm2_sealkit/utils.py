# SPDX-License-Identifier: BSD-2
"""
Parsing and validation of the values the commands take from the outside:
hexadecimal handles, hex encoded payloads and PCR indexes.
"""
import re
from typing import Union

from .config import MAX_SEAL_SIZE
from .constants import HANDLE_MAX, NO_PCR, PCR_FIRST, PCR_LAST
from .exceptions import InputError

_HEX_NUMBER = re.compile(r"[0-9a-f]+")
_HEX_BYTES = re.compile(r"(?:[0-9a-fA-F]{2})*")


def parse_handle(flag_name: str, value: str) -> int:
    """Parse a TPM handle given as hex text, with or without a 0x prefix.

    Raises:
        InputError: If the value is missing, not hex or wider than 32 bits.
    """
    if not value:
        raise InputError(f"invalid flag '{flag_name}': missing value")
    text = value.lower()
    if text.startswith("0x"):
        text = text[2:]
    if not _HEX_NUMBER.fullmatch(text):
        raise InputError(f"invalid flag '{flag_name}': {value!r} is not a hex number")
    handle = int(text, 16)
    if handle > HANDLE_MAX:
        raise InputError(f"invalid flag '{flag_name}': exceeds 32 bits")
    return handle


def format_handle(handle: int) -> str:
    """Lowercase hex, no prefix, as printed after createsrk and load."""
    return f"{int(handle):x}"


def check_seal_data(data: bytes, limit: int = MAX_SEAL_SIZE) -> bytes:
    if len(data) > limit:
        raise InputError(f"invalid flag 'data': exceeds {limit} bytes")
    return data


def parse_data(value: str, limit: int = MAX_SEAL_SIZE) -> bytes:
    """Decode the hex encoded payload of the seal command."""
    value = value or ""
    if not _HEX_BYTES.fullmatch(value):
        raise InputError(f"invalid flag 'data': {value!r} is not hex encoded bytes")
    data = bytes.fromhex(value)
    return check_seal_data(data, limit)


def check_pcr(pcr: Union[int, str], allow_none: bool = True) -> int:
    """Validate a PCR index.

    Args:
        pcr (Union[int, str]): The index, NO_PCR (-1) meaning no PCR binding.
        allow_none (bool): Whether NO_PCR is acceptable. Defaults to True.

    Returns:
        The index as an int.

    Raises:
        InputError: If the index is not an integer or is out of range.
    """
    try:
        index = int(pcr)
    except (TypeError, ValueError) as e:
        raise InputError(f"invalid flag 'pcr': {e}") from e
    if index == NO_PCR and allow_none:
        return index
    if index < PCR_FIRST or index > PCR_LAST:
        raise InputError("invalid flag 'pcr': out of range")
    return index
