# SPDX-License-Identifier: BSD-2
import enum
import logging
import warnings
from typing import List, Optional

from tpm2_pytss.constants import ESYS_TR, TPM2_ALG, TPM2_SE
from tpm2_pytss.types import TPMT_SYM_DEF

from .constants import NONCE_CALLER
from .exceptions import InputError, tss_call
from .objects import release
from .transport import TPMTransport
from .types import PCRSelection

logger = logging.getLogger(__name__)


class UnboundSessionWarning(UserWarning):
    """A policy session was started without salt or bind key.

    Such a session has no session key, so nothing protects the commands using
    it against tampering on the way to the TPM; only the policy assertions
    gate the authorization. Objects sealed by this package expect exactly this
    kind of session.
    """


class SessionState(enum.Enum):
    UNSTARTED = "unstarted"
    STARTED = "started"
    CONSUMED = "consumed"
    FLUSHED = "flushed"


class PolicySession:
    """A TPM policy session accumulating a policy digest.

    The session goes UNSTARTED -> STARTED -> CONSUMED -> FLUSHED. Assertions
    are only accepted while STARTED, it is consumed at most once by the command
    it authorizes and flushed exactly once, consumed or not. Used as a context
    manager the session is flushed on exit.

    Args:
        transport (TPMTransport): The open TPM.
        hash_alg (TPM2_ALG): The session hash, which is also the policy digest
            algorithm. Defaults to TPM2_ALG.SHA256.
    """

    def __init__(self, transport: TPMTransport, hash_alg: TPM2_ALG = TPM2_ALG.SHA256):
        self._transport = transport
        self._hash_alg = hash_alg
        self._handle: Optional[ESYS_TR] = None
        self._state = SessionState.UNSTARTED
        self._assertions: List[str] = []
        self._selections = set()

    @classmethod
    def start(
        cls, transport: TPMTransport, hash_alg: TPM2_ALG = TPM2_ALG.SHA256
    ) -> "PolicySession":
        """Create and start a session.

        Raises:
            DeviceError: If the TPM has no free session slot.
        """
        session = cls(transport, hash_alg)
        session._start()
        return session

    def _start(self) -> None:
        self._check_state(SessionState.UNSTARTED, "start")
        warnings.warn(
            "policy session is neither salted nor bound, "
            "its security rests on the policy assertions alone",
            UnboundSessionWarning,
            stacklevel=3,
        )
        with tss_call("unable to start session"):
            self._handle = self._transport.ectx.start_auth_session(
                tpm_key=ESYS_TR.NONE,
                bind=ESYS_TR.NONE,
                session_type=TPM2_SE.POLICY,
                symmetric=TPMT_SYM_DEF(algorithm=TPM2_ALG.NULL),
                auth_hash=self._hash_alg,
                nonce_caller=NONCE_CALLER,
            )
        self._state = SessionState.STARTED
        logger.debug("started policy session %s", self._handle)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def handle(self) -> Optional[ESYS_TR]:
        return self._handle

    @property
    def hash_alg(self) -> TPM2_ALG:
        return self._hash_alg

    @property
    def assertions(self) -> List[str]:
        """The assertions applied so far, in order."""
        return list(self._assertions)

    def _check_state(self, expected: SessionState, action: str) -> None:
        if self._state != expected:
            raise RuntimeError(
                f"cannot {action} a policy session that is {self._state.value}"
            )

    def policy_pcr(self, selection: PCRSelection, expected_digest: bytes = b"") -> None:
        """Require the selected PCRs to hold their values at authorization time.

        Args:
            selection (PCRSelection): The PCRs to bind.
            expected_digest (bytes): Digest of the expected PCR values. Empty
                means the TPM takes the current values. Defaults to empty.

        Raises:
            InputError: If the selection was already asserted on this session
                or names an unknown bank.
        """
        self._check_state(SessionState.STARTED, "extend")
        key = str(selection)
        if key in self._selections:
            raise InputError(f"PCR selection {key} already bound to this session")
        pcrs = selection.to_tpml()
        with tss_call("unable to bind PCRs to auth policy"):
            self._transport.ectx.policy_pcr(self._handle, expected_digest, pcrs)
        self._selections.add(key)
        self._assertions.append(f"pcr({key})")

    def policy_password(self) -> None:
        """Require the object password, presented in clear, at authorization time."""
        self._check_state(SessionState.STARTED, "extend")
        with tss_call("unable to require password for auth policy"):
            self._transport.ectx.policy_password(self._handle)
        self._assertions.append("password")

    def get_digest(self) -> bytes:
        """Read the policy digest accumulated so far, leaving the session usable."""
        self._check_state(SessionState.STARTED, "read")
        with tss_call("unable to get policy digest"):
            return bytes(self._transport.ectx.policy_get_digest(self._handle))

    def consume(self) -> ESYS_TR:
        """Hand the session to the command it authorizes."""
        self._check_state(SessionState.STARTED, "consume")
        self._state = SessionState.CONSUMED
        return self._handle

    def flush(self) -> None:
        """Release the session in the TPM.

        Only the first call on a started session talks to the TPM; a session
        that never started has nothing to release.
        """
        if self._state in (SessionState.UNSTARTED, SessionState.FLUSHED):
            return
        # set first so a failing flush is not retried
        self._state = SessionState.FLUSHED
        release(self._transport, self._handle, "session")

    def __enter__(self):
        if self._state == SessionState.UNSTARTED:
            self._start()
        return self

    def __exit__(self, _type, value, traceback) -> None:
        self.flush()

    def __str__(self):
        return "%s(handle=%s, state=%s, assertions=[%s])" % (
            self.__class__.__qualname__,
            self._handle,
            self._state.value,
            ", ".join(self._assertions),
        )
