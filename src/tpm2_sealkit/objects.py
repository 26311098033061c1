# SPDX-License-Identifier: BSD-2
"""
Creation, loading, persistence and release of TPM objects.

Handles cross this module as plain 32 bit integers; the ESYS_TR resource
objects the ESAPI works with stay inside.
"""
import contextlib
import logging
from typing import Iterator, List, Optional, Union

from tpm2_pytss import TSS2_Exception
from tpm2_pytss.constants import ESYS_TR, TPM2_CAP, TPM2_HT, TPM2_HR
from tpm2_pytss.types import (
    TPM2B_PRIVATE,
    TPM2B_PUBLIC,
    TPM2B_SENSITIVE_CREATE,
    TPMT_PUBLIC,
)

from .exceptions import InputError, SealkitError, tss_call
from .internal.templates import check_storage_template, srk_template
from .transport import TPMTransport

logger = logging.getLogger(__name__)

HIERARCHIES = {
    "owner": ESYS_TR.OWNER,
    "platform": ESYS_TR.PLATFORM,
    "endorsement": ESYS_TR.ENDORSEMENT,
    "null": ESYS_TR.NULL,
}

HANDLE_KINDS = {
    "transient": TPM2_HT.TRANSIENT,
    "session": TPM2_HT.LOADED_SESSION,
    "persistent": TPM2_HT.PERSISTENT,
}

# (TPM2_MAX_CAP_BUFFER - sizeof(TPM2_CAP) - sizeof(UINT32)) / sizeof(TPM2_HANDLE)
_MAX_CAP_HANDLES = 254


def resolve_hierarchy(hierarchy: Union[str, ESYS_TR]) -> ESYS_TR:
    if isinstance(hierarchy, ESYS_TR):
        return hierarchy
    try:
        return HIERARCHIES[hierarchy.lower()]
    except (KeyError, AttributeError):
        raise InputError(
            f"unknown hierarchy {hierarchy!r}, expected one of {', '.join(HIERARCHIES)}"
        )


def decode_public(data: bytes) -> TPM2B_PUBLIC:
    """Unmarshal a public blob, the TPMT_PUBLIC without a size prefix."""
    try:
        area, _ = TPMT_PUBLIC.unmarshal(data)
    except (TSS2_Exception, ValueError, TypeError) as e:
        raise InputError(f"invalid public blob: {e}") from e
    return TPM2B_PUBLIC(area)


def decode_private(data: bytes) -> TPM2B_PRIVATE:
    """Wrap a private blob, the TPM2B_PRIVATE buffer, for the ESAPI."""
    try:
        return TPM2B_PRIVATE(data)
    except (TSS2_Exception, ValueError, TypeError, IndexError) as e:
        raise InputError(f"invalid private blob: {e}") from e


def encode_public(public: TPM2B_PUBLIC) -> bytes:
    return bytes(public.publicArea.marshal())


def encode_private(private: TPM2B_PRIVATE) -> bytes:
    return bytes(private)


def resource(transport: TPMTransport, handle: int, what: str = "object") -> ESYS_TR:
    """Get the ESYS_TR of an object already resident in the TPM."""
    with tss_call(f"invalid {what} handle {handle:#x}"):
        return transport.ectx.tr_from_tpmpublic(handle)


def tpm_handle(transport: TPMTransport, esys_handle: ESYS_TR) -> int:
    with tss_call("unable to read TPM handle"):
        return int(transport.ectx.tr_get_tpm_handle(esys_handle))


def release(transport: TPMTransport, esys_handle: ESYS_TR, what: str = "object"):
    """Flush a transient object or session known by its ESYS_TR."""
    with tss_call(f"unable to flush {what}"):
        transport.ectx.flush_context(esys_handle)
    logger.debug("flushed %s %s", what, esys_handle)


@contextlib.contextmanager
def transient(transport: TPMTransport, esys_handle: ESYS_TR) -> Iterator[ESYS_TR]:
    """Flush a transient object when leaving the block, whatever happens in it."""
    try:
        yield esys_handle
    finally:
        release(transport, esys_handle)


def _resident_handle(transport: TPMTransport, esys_handle: ESYS_TR, what: str) -> int:
    # The object only outlives this call when its handle can be reported.
    try:
        return tpm_handle(transport, esys_handle)
    except SealkitError:
        release(transport, esys_handle, what)
        raise


def create_primary(
    transport: TPMTransport,
    hierarchy: Union[str, ESYS_TR],
    template: TPM2B_PUBLIC,
    hierarchy_auth: Optional[str] = None,
) -> int:
    """Create a primary object under a hierarchy.

    Args:
        transport (TPMTransport): The open TPM.
        hierarchy (Union[str, ESYS_TR]): owner, platform, endorsement or null.
        template (TPM2B_PUBLIC): The public template of the object.
        hierarchy_auth (str): The hierarchy password. Defaults to None, the empty password.

    Returns:
        The transient handle of the new object.

    Raises:
        DeviceError: If the TPM rejects the template or is out of object slots.
        AuthorizationError: If the hierarchy password is wrong.
    """
    ectx = transport.ectx
    primary = resolve_hierarchy(hierarchy)
    with tss_call("can't create primary key"):
        ectx.tr_set_auth(primary, hierarchy_auth)
        esys_handle, _, _, _, _ = ectx.create_primary(
            TPM2B_SENSITIVE_CREATE(), template, primary
        )
    handle = _resident_handle(transport, esys_handle, "primary key")
    logger.info("created primary key %#x", handle)
    return handle


def create_srk(transport: TPMTransport, owner_auth: Optional[str] = None) -> int:
    """Create the shared storage root key under the owner hierarchy."""
    check_storage_template(srk_template)
    return create_primary(transport, ESYS_TR.OWNER, srk_template, owner_auth)


def load(
    transport: TPMTransport,
    parent_handle: int,
    parent_auth: Optional[str],
    public_blob: bytes,
    private_blob: bytes,
) -> int:
    """Load an object created under a resident parent.

    Returns:
        The transient handle of the loaded object.

    Raises:
        InputError: If a blob cannot be decoded.
        DeviceError: If the parent is not resident or the blobs do not belong to it.
        AuthorizationError: If the parent password is wrong.
    """
    public = decode_public(public_blob)
    private = decode_private(private_blob)
    ectx = transport.ectx
    parent = resource(transport, parent_handle, "parent")
    with tss_call("unable to load data"):
        ectx.tr_set_auth(parent, parent_auth)
        esys_handle = ectx.load(parent, private, public)
    handle = _resident_handle(transport, esys_handle, "loaded object")
    logger.info("loaded object %#x under parent %#x", handle, parent_handle)
    return handle


def evict_control(
    transport: TPMTransport,
    auth: Optional[str],
    hierarchy: Union[str, ESYS_TR],
    object_handle: int,
    persistent_handle: int,
) -> None:
    """Make a transient object persistent, or remove a persistent object.

    When object_handle names a transient object it is copied to
    persistent_handle. When object_handle is the persistent handle itself the
    object is evicted from that slot.

    Raises:
        DeviceError: If the object is not resident or the slot is taken.
        AuthorizationError: If the hierarchy password is wrong.
    """
    ectx = transport.ectx
    auth_handle = resolve_hierarchy(hierarchy)
    if auth_handle not in (ESYS_TR.OWNER, ESYS_TR.PLATFORM):
        raise InputError("evict control needs the owner or the platform hierarchy")
    obj = resource(transport, object_handle)
    with tss_call("unable to evict object"):
        ectx.tr_set_auth(auth_handle, auth)
        ectx.evict_control(auth_handle, obj, persistent_handle)
    if object_handle == persistent_handle:
        logger.info("evicted persistent object %#x", persistent_handle)
    else:
        logger.info("persisted object %#x at %#x", object_handle, persistent_handle)


def flush_context(transport: TPMTransport, handle: int) -> None:
    """Release a transient object or a session by its TPM handle."""
    esys_handle = resource(transport, handle)
    release(transport, esys_handle)


def list_handles(transport: TPMTransport, kind: str) -> List[int]:
    """List the resident handles of a kind: transient, session or persistent."""
    try:
        handle_type = HANDLE_KINDS[kind]
    except KeyError:
        raise InputError(
            f"unknown handle kind {kind!r}, expected one of {', '.join(HANDLE_KINDS)}"
        )
    first = handle_type << TPM2_HR.SHIFT
    handles = []
    more = True
    with tss_call("unable to read handles"):
        while more:
            more, data = transport.ectx.get_capability(
                TPM2_CAP.HANDLES, first, _MAX_CAP_HANDLES
            )
            found = [int(h) for h in data.data.handles]
            if not found:
                break
            handles.extend(found)
            first = found[-1] + 1
    return handles
