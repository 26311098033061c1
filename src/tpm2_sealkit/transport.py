# SPDX-License-Identifier: BSD-2
import logging
import os
import stat
from typing import Optional

from tpm2_pytss import ESAPI, TCTILdr, TSS2_Exception
from tpm2_pytss.constants import TPM2_RC, TPM2_SU

from .exceptions import TransportError, translate

logger = logging.getLogger(__name__)


def tcti_name_conf(path: str) -> str:
    """Pick the TCTI for a TPM path.

    A character device uses the device TCTI, a Unix socket the swtpm TCTI.
    Anything else containing a ``:`` that does not exist on disk is taken as a
    tpm2-tools style ``<tcti-name>:<tcti-conf>`` string, e.g. ``swtpm:port=2321``.
    """
    try:
        mode = os.stat(path).st_mode
    except OSError:
        if ":" in path:
            return path
        return f"device:{path}"
    if stat.S_ISSOCK(mode):
        return f"swtpm:path={path}"
    return f"device:{path}"


class TPMTransport:
    """An open channel to a TPM with the ESAPI context bound to it.

    Use TPMTransport.open rather than the constructor.

    Args:
        ectx (ESAPI): The ESAPI context.
        tcti (TCTILdr): The TCTI the context runs over, closed with the transport.
        path (str): What the caller asked to open, for messages.
    """

    def __init__(self, ectx: ESAPI, tcti: Optional[TCTILdr], path: str):
        self._ectx = ectx
        self._tcti = tcti
        self.path = path

    @classmethod
    def open(cls, path: str) -> "TPMTransport":
        """Open the TPM at path.

        Raises:
            TransportError: If the TCTI cannot be loaded or cannot reach the TPM.
        """
        name_conf = tcti_name_conf(path)
        logger.debug("opening TPM %s using TCTI %s", path, name_conf)
        tcti = None
        try:
            tcti = TCTILdr.parse(name_conf)
            ectx = ESAPI(tcti)
        except (TSS2_Exception, RuntimeError) as e:
            if tcti is not None:
                tcti.close()
            raise TransportError(f"can't open TPM {path!r}: {e}") from e
        return cls(ectx, tcti, path)

    @property
    def ectx(self) -> ESAPI:
        if self._ectx is None:
            raise TransportError(f"connection to TPM {self.path!r} is closed")
        return self._ectx

    @property
    def closed(self) -> bool:
        return self._ectx is None

    def startup(self) -> None:
        """Send TPM2_Startup(CLEAR), needed by freshly started simulators.

        A TPM that already ran its startup answers TPM_RC_INITIALIZE, which is
        accepted.
        """
        try:
            self.ectx.startup(TPM2_SU.CLEAR)
        except TSS2_Exception as e:
            if e.error == TPM2_RC.INITIALIZE:
                logger.debug("TPM %s already started", self.path)
                return
            raise translate(e, "unable to start up TPM") from e

    def close(self) -> None:
        """Finalize the ESAPI context and the TCTI.

        Raises:
            TransportError: If the transport was already closed or finalizing failed.
        """
        if self._ectx is None:
            raise TransportError(
                f"unable to close connection to TPM: {self.path!r} is not open"
            )
        ectx, tcti = self._ectx, self._tcti
        self._ectx = None
        self._tcti = None
        try:
            ectx.close()
            if tcti is not None:
                tcti.close()
        except (TSS2_Exception, OSError) as e:
            raise TransportError(f"unable to close connection to TPM: {e}") from e
        logger.debug("closed TPM %s", self.path)

    def __enter__(self):
        return self

    def __exit__(self, _type, value, traceback) -> None:
        if not self.closed:
            self.close()

    def __str__(self):
        return self.path
