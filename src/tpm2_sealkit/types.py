# SPDX-License-Identifier: BSD-2
from typing import NamedTuple, Tuple, Union

from tpm2_pytss.constants import TPM2_ALG
from tpm2_pytss.types import TPML_PCR_SELECTION

from .config import PCR_BANK
from .constants import NO_PCR
from .exceptions import InputError
from .internal.crypto import _get_digest
from .utils import check_pcr


def bank_algorithm(bank: Union[str, TPM2_ALG]) -> TPM2_ALG:
    """Map a PCR bank name such as ``sha256`` to its TPM2_ALG.

    Raises:
        InputError: If the name is not a hash algorithm known here.
    """
    if isinstance(bank, TPM2_ALG):
        alg = bank
    else:
        try:
            alg = TPM2_ALG(TPM2_ALG.parse(bank))
        except (ValueError, TypeError) as e:
            raise InputError(f"unknown PCR bank {bank!r}") from e
    if _get_digest(alg) is None:
        raise InputError(f"unknown PCR bank {bank!r}")
    return alg


class PCRSelection(NamedTuple):
    """A hash bank and the PCR indexes of that bank a policy depends on."""

    bank: str = PCR_BANK
    indices: Tuple[int, ...] = ()

    @classmethod
    def from_pcr(cls, pcr: int, bank: str = PCR_BANK) -> "PCRSelection":
        """Selection for a single PCR, empty for NO_PCR.

        Raises:
            InputError: If pcr is out of range or bank is unknown.
        """
        pcr = check_pcr(pcr)
        bank_algorithm(bank)
        if pcr == NO_PCR:
            return cls(bank, ())
        return cls(bank, (pcr,))

    @property
    def is_empty(self) -> bool:
        return not self.indices

    def to_tpml(self) -> TPML_PCR_SELECTION:
        if self.is_empty:
            return TPML_PCR_SELECTION()
        bank_algorithm(self.bank)
        return TPML_PCR_SELECTION.parse(str(self))

    def __str__(self):
        return f"{self.bank}:{','.join(str(i) for i in sorted(self.indices))}"


class SealedObject(NamedTuple):
    """The two halves of a sealed data object and the policy gating it.

    ``private`` is the TPM2B_PRIVATE buffer, ``public`` the marshaled
    TPMT_PUBLIC; neither carries the TPM2B size prefix.
    """

    private: bytes
    public: bytes
    policy_digest: bytes
