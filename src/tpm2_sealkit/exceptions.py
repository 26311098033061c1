# SPDX-License-Identifier: BSD-2
import contextlib
import logging
from typing import Optional

from tpm2_pytss import TSS2_Exception
from tpm2_pytss.constants import TPM2_RC, TSS2_RC

logger = logging.getLogger(__name__)

# TPM response codes meaning "wrong secret or wrong state", as opposed to a
# malfunction or misuse of the device.
_AUTHORIZATION_RCS = frozenset(
    (
        TPM2_RC.AUTH_FAIL,
        TPM2_RC.BAD_AUTH,
        TPM2_RC.POLICY_FAIL,
        TPM2_RC.PCR_CHANGED,
        TPM2_RC.LOCKOUT,
        TPM2_RC.AUTH_MISSING,
        TPM2_RC.AUTH_UNAVAILABLE,
    )
)

_TPM_LAYERS = (TSS2_RC.TPM_RC_LAYER, TSS2_RC.RESMGR_TPM_RC_LAYER)


class SealkitError(Exception):
    """Base class of every error this package reports."""


class InputError(SealkitError):
    """A flag or argument is malformed. Raised before the TPM is touched."""


class TransportError(SealkitError):
    """The channel to the TPM could not be opened, used or closed."""


class StorageError(SealkitError):
    """A blob could not be written to its destination."""


class CommandError(SealkitError):
    """A TPM command failed.

    Args:
        message (str): Human readable description including the TSS decoding.
        rc (int): The return code reported by the TSS, None if not known.
    """

    def __init__(self, message: str, rc: Optional[int] = None):
        super().__init__(message)
        self._rc = rc

    @property
    def rc(self) -> Optional[int]:
        """int: The TSS return code, None if the error did not come from the TSS."""
        return self._rc


class DeviceError(CommandError):
    """The TPM rejected a command: bad template, bad handle, resource exhaustion..."""


class AuthorizationError(CommandError):
    """A password or policy did not match what the TPM object requires."""


def is_authorization_failure(error: TSS2_Exception) -> bool:
    """Tell whether a TSS error means the presented authorization was wrong."""
    rc = int(error.rc)
    if rc == TSS2_RC.ESYS_RC_RSP_AUTH_FAILED:
        return True
    layer = rc & TSS2_RC.RC_LAYER_MASK
    if layer not in _TPM_LAYERS:
        return False
    return (int(error.error) & ~TSS2_RC.RC_LAYER_MASK) in _AUTHORIZATION_RCS


def translate(error: TSS2_Exception, message: str) -> SealkitError:
    """Convert a TSS2_Exception into the matching SealkitError.

    Args:
        error (TSS2_Exception): The exception raised by the tpm2-pytss bindings.
        message (str): What was being attempted, prefixed to the TSS description.

    Returns:
        A TransportError for TCTI layer failures, an AuthorizationError for
        policy and password mismatches, a DeviceError otherwise.
    """
    rc = int(error.rc)
    text = f"{message}: {error}"
    if rc & TSS2_RC.RC_LAYER_MASK == TSS2_RC.TCTI_RC_LAYER:
        return TransportError(text)
    if is_authorization_failure(error):
        return AuthorizationError(text, rc)
    return DeviceError(text, rc)


@contextlib.contextmanager
def tss_call(message: str):
    """Translate TSS2_Exceptions raised by the enclosed TPM command."""
    try:
        yield
    except TSS2_Exception as error:
        translated = translate(error, message)
        logger.debug("%s (rc=%#x)", translated, int(error.rc))
        raise translated from error
