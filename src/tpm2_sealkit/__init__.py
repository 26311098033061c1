# SPDX-License-Identifier: BSD-2
from .exceptions import (
    SealkitError,
    InputError,
    TransportError,
    StorageError,
    CommandError,
    DeviceError,
    AuthorizationError,
)
from .collector import ErrorCollector
from .transport import TPMTransport
from .blobs import Blob, FileBlob, MemoryBlob
from .types import PCRSelection, SealedObject
from .constants import NO_PCR
from .objects import (
    create_primary,
    create_srk,
    load,
    evict_control,
    flush_context,
    list_handles,
    transient,
)
from .session import PolicySession, SessionState, UnboundSessionWarning
from .policy import PolicyCalculator, seal_policy_digest
from .seal import seal, unseal, create_sealed_object
