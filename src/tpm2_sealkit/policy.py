# SPDX-License-Identifier: BSD-2
"""
Offline computation of the policy digests a policy session reaches.

Knowing the digest up front allows sealing to PCR values other than the
current ones, and checking a public blob's authPolicy without touching a TPM.
"""
from typing import Dict, Optional, Sequence

from cryptography.hazmat.primitives import hashes
from tpm2_pytss.constants import TPM2_ALG, TPM2_CC

from .constants import NO_PCR
from .exceptions import InputError
from .internal.crypto import _get_digest
from .types import PCRSelection, bank_algorithm


class PolicyCalculator:
    """Replays policy assertions on the host.

    Each assertion extends the digest the way the TPM does for a trial or
    policy session using hash_alg.

    Args:
        hash_alg (TPM2_ALG): The session hash. Defaults to TPM2_ALG.SHA256.

    Raises:
        ValueError: If the hash algorithm is not supported.
    """

    def __init__(self, hash_alg: TPM2_ALG = TPM2_ALG.SHA256):
        dt = _get_digest(hash_alg)
        if dt is None:
            raise ValueError(f"unsupported digest algorithm: {hash_alg}")
        self._hash_alg = hash_alg
        self._dt = dt
        self._digest = b"\x00" * dt.digest_size

    @property
    def hash_alg(self) -> TPM2_ALG:
        return self._hash_alg

    @property
    def digest(self) -> bytes:
        return self._digest

    def _extend(self, *parts: bytes) -> None:
        d = hashes.Hash(self._dt())
        d.update(self._digest)
        for p in parts:
            d.update(p)
        self._digest = d.finalize()

    def policy_pcr(
        self, selection: PCRSelection, pcr_values: Sequence[bytes]
    ) -> bytes:
        """Extend with TPM2_PolicyPCR for the given PCR values.

        Args:
            selection (PCRSelection): The PCRs bound.
            pcr_values (Sequence[bytes]): Their values, in ascending index order.

        Returns:
            The new digest.
        """
        if len(pcr_values) != len(selection.indices):
            raise InputError(
                f"{len(selection.indices)} PCR values needed, got {len(pcr_values)}"
            )
        bank = _get_digest(bank_algorithm(selection.bank))
        for v in pcr_values:
            if len(v) != bank.digest_size:
                raise InputError(
                    f"PCR value of {len(v)} bytes does not fit the {selection.bank} bank"
                )
        d = hashes.Hash(self._dt())
        for v in pcr_values:
            d.update(v)
        pcr_digest = d.finalize()
        self._extend(
            int(TPM2_CC.PolicyPCR).to_bytes(4, "big"),
            bytes(selection.to_tpml().marshal()),
            pcr_digest,
        )
        return self._digest

    def policy_password(self) -> bytes:
        """Extend with TPM2_PolicyPassword, recorded as TPM_CC_PolicyAuthValue."""
        self._extend(int(TPM2_CC.PolicyAuthValue).to_bytes(4, "big"))
        return self._digest


def seal_policy_digest(
    pcr: int = NO_PCR,
    pcr_values: Optional[Dict[int, bytes]] = None,
    bank: str = None,
    hash_alg: TPM2_ALG = TPM2_ALG.SHA256,
) -> bytes:
    """The authPolicy seal gives an object bound to pcr holding pcr_values.

    Args:
        pcr (int): The PCR index, NO_PCR for a password only policy.
        pcr_values (Dict[int, bytes]): Value of the PCR, keyed by index.
        bank (str): The PCR bank. Defaults to the configured bank.
        hash_alg (TPM2_ALG): The session hash. Defaults to TPM2_ALG.SHA256.
    """
    if bank is None:
        selection = PCRSelection.from_pcr(pcr)
    else:
        selection = PCRSelection.from_pcr(pcr, bank)
    calc = PolicyCalculator(hash_alg)
    if not selection.is_empty:
        values = pcr_values or {}
        try:
            ordered = [values[i] for i in sorted(selection.indices)]
        except KeyError as e:
            raise InputError(f"no value given for PCR {e}") from e
        calc.policy_pcr(selection, ordered)
    return calc.policy_password()
