# SPDX-License-Identifier: BSD-2
"""
Sealing data to a policy and unsealing it again.

Both directions replay the same policy on a fresh session: the chosen PCR
(if any) must hold the value it held when sealing, and the object password
must be presented.
"""
import logging
from typing import Optional

from tpm2_pytss.types import (
    TPM2B_AUTH,
    TPM2B_SENSITIVE_CREATE,
    TPM2B_SENSITIVE_DATA,
    TPMS_SENSITIVE_CREATE,
)

from .blobs import Blob
from .collector import ErrorCollector
from .config import PCR_BANK
from .exceptions import tss_call
from .internal.templates import check_sealed_template, sealed_template
from .objects import encode_private, encode_public, resource
from .session import PolicySession
from .transport import TPMTransport
from .types import PCRSelection, SealedObject
from .utils import check_pcr, check_seal_data

logger = logging.getLogger(__name__)


def _auth(password: Optional[str]) -> bytes:
    if not password:
        return b""
    if isinstance(password, str):
        return password.encode()
    return bytes(password)


def _apply_seal_policy(session: PolicySession, selection: PCRSelection) -> None:
    if not selection.is_empty:
        session.policy_pcr(selection)
    session.policy_password()


def create_sealed_object(
    transport: TPMTransport,
    parent_handle: int,
    parent_auth: Optional[str],
    object_auth: Optional[str],
    data: bytes,
    policy_digest: bytes,
) -> SealedObject:
    """Run TPM2_Create for a keyed hash object holding data.

    The object can only be used through a policy session reaching
    policy_digest. It is not loaded.

    Raises:
        InputError: If data is too large.
        DeviceError: If the parent is not a resident storage key.
        AuthorizationError: If the parent password is wrong.
    """
    check_seal_data(data)
    template = sealed_template(policy_digest)
    check_sealed_template(template)
    sensitive = TPM2B_SENSITIVE_CREATE(
        TPMS_SENSITIVE_CREATE(
            userAuth=TPM2B_AUTH(_auth(object_auth)),
            data=TPM2B_SENSITIVE_DATA(data),
        )
    )
    ectx = transport.ectx
    parent = resource(transport, parent_handle, "parent")
    with tss_call("unable to seal data"):
        ectx.tr_set_auth(parent, parent_auth)
        private, public, _, _, _ = ectx.create(parent, sensitive, template)
    logger.info("sealed %d bytes under parent %#x", len(data), parent_handle)
    return SealedObject(encode_private(private), encode_public(public), policy_digest)


def seal(
    transport: TPMTransport,
    errors: ErrorCollector,
    parent_handle: int,
    parent_auth: Optional[str],
    object_auth: Optional[str],
    data: bytes,
    pcr: int,
    private_sink: Blob,
    public_sink: Blob,
    bank: str = PCR_BANK,
) -> Optional[SealedObject]:
    """Seal data under a parent, gated by the object password and optionally a PCR.

    Failures are appended to errors; the policy session is flushed whatever
    happens. The private half is written before the public half.

    Args:
        transport (TPMTransport): The open TPM.
        errors (ErrorCollector): Where failures are recorded.
        parent_handle (int): Handle of a resident storage key.
        parent_auth (str): Password of the parent.
        object_auth (str): Password of the new object.
        data (bytes): At most 128 bytes to seal.
        pcr (int): PCR index to bind to, NO_PCR for none.
        private_sink (Blob): Receives the private blob.
        public_sink (Blob): Receives the public blob.
        bank (str): The PCR bank. Defaults to the configured bank.

    Returns:
        The SealedObject, or None if anything failed.
    """
    result = None
    with errors.operation() as defer:
        check_pcr(pcr)
        check_seal_data(data)
        selection = PCRSelection.from_pcr(pcr, bank)

        session = PolicySession.start(transport)
        defer(session.flush)
        _apply_seal_policy(session, selection)
        digest = session.get_digest()
        logger.debug("seal policy digest %s", digest.hex())

        sealed = create_sealed_object(
            transport, parent_handle, parent_auth, object_auth, data, digest
        )
        session.flush()

        private_sink.write(sealed.private)
        public_sink.write(sealed.public)
        result = sealed
    return result


def unseal(
    transport: TPMTransport,
    errors: ErrorCollector,
    object_handle: int,
    object_auth: Optional[str],
    pcr: int,
    sink: Optional[Blob] = None,
    bank: str = PCR_BANK,
) -> Optional[bytes]:
    """Recover the data of a loaded sealed object.

    Args:
        transport (TPMTransport): The open TPM.
        errors (ErrorCollector): Where failures are recorded.
        object_handle (int): Handle of the loaded sealed object.
        object_auth (str): Password of the object.
        pcr (int): The PCR the object was sealed to, NO_PCR for none.
        sink (Blob): Receives the data. Defaults to None, nothing written.
        bank (str): The PCR bank. Defaults to the configured bank.

    Returns:
        The unsealed bytes, or None if anything failed. A policy mismatch is
        recorded as an AuthorizationError.
    """
    result = None
    with errors.operation() as defer:
        check_pcr(pcr)
        selection = PCRSelection.from_pcr(pcr, bank)
        item = resource(transport, object_handle, "object")

        session = PolicySession.start(transport)
        defer(session.flush)
        _apply_seal_policy(session, selection)

        ectx = transport.ectx
        with tss_call("unable to unseal data"):
            ectx.tr_set_auth(item, object_auth)
            data = bytes(ectx.unseal(item, session1=session.consume()))
        session.flush()
        logger.info("unsealed %d bytes from %#x", len(data), object_handle)

        if sink is not None:
            sink.write(data)
        result = data
    return result
