# SPDX-License-Identifier: BSD-2
import unittest
import warnings
from unittest import mock

from tpm2_pytss import TSS2_Exception
from tpm2_pytss.constants import ESYS_TR, TPM2_ALG, TPM2_RC, TPM2_SE

from tpm2_sealkit.exceptions import AuthorizationError, DeviceError, InputError
from tpm2_sealkit.session import PolicySession, SessionState, UnboundSessionWarning
from tpm2_sealkit.types import PCRSelection
from .TSS2_BaseTest import MockTpmTest


class TestPolicySession(MockTpmTest):
    def setUp(self):
        super().setUp()
        self.ectx.start_auth_session.return_value = mock.sentinel.session
        self.ectx.policy_get_digest.return_value = b"\x5a" * 32

    def start(self):
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UnboundSessionWarning)
            return PolicySession.start(self.transport)

    def test_start(self):
        with self.assertWarns(UnboundSessionWarning):
            session = PolicySession.start(self.transport)
        self.assertEqual(session.state, SessionState.STARTED)
        self.assertEqual(session.handle, mock.sentinel.session)
        self.assertEqual(session.hash_alg, TPM2_ALG.SHA256)

        kwargs = self.ectx.start_auth_session.call_args.kwargs
        self.assertEqual(kwargs["tpm_key"], ESYS_TR.NONE)
        self.assertEqual(kwargs["bind"], ESYS_TR.NONE)
        self.assertEqual(kwargs["session_type"], TPM2_SE.POLICY)
        self.assertEqual(kwargs["auth_hash"], TPM2_ALG.SHA256)
        self.assertEqual(kwargs["symmetric"].algorithm, TPM2_ALG.NULL)
        self.assertEqual(kwargs["nonce_caller"], b"\x00" * 16)

    def test_start_failure(self):
        self.ectx.start_auth_session.side_effect = TSS2_Exception(
            TPM2_RC.SESSION_MEMORY
        )
        session = PolicySession(self.transport)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UnboundSessionWarning)
            with self.assertRaises(DeviceError) as e:
                session._start()
        self.assertTrue(str(e.exception).startswith("unable to start session: "))
        self.assertEqual(session.state, SessionState.UNSTARTED)

        # nothing to release for a session that never started
        session.flush()
        self.ectx.flush_context.assert_not_called()

    def test_assertions(self):
        session = self.start()
        selection = PCRSelection("sha256", (7,))
        session.policy_pcr(selection)
        session.policy_password()
        self.assertEqual(session.get_digest(), b"\x5a" * 32)
        self.assertEqual(session.assertions, ["pcr(sha256:7)", "password"])

        args = self.ectx.policy_pcr.call_args.args
        self.assertEqual(args[0], mock.sentinel.session)
        self.assertEqual(args[1], b"")
        self.assertEqual(args[2].count, 1)
        self.ectx.policy_password.assert_called_once_with(mock.sentinel.session)
        # reading the digest does not consume the session
        self.assertEqual(session.state, SessionState.STARTED)

    def test_duplicate_selection(self):
        session = self.start()
        session.policy_pcr(PCRSelection("sha256", (7,)))
        with self.assertRaises(InputError):
            session.policy_pcr(PCRSelection("sha256", (7,)))
        self.assertEqual(self.ectx.policy_pcr.call_count, 1)

        session.policy_pcr(PCRSelection("sha256", (8,)))
        self.assertEqual(self.ectx.policy_pcr.call_count, 2)

    def test_unknown_bank(self):
        session = self.start()
        with self.assertRaises(InputError):
            session.policy_pcr(PCRSelection("sha257", (7,)))
        self.ectx.policy_pcr.assert_not_called()
        self.assertEqual(session.assertions, [])
        self.assertEqual(session.state, SessionState.STARTED)

    def test_assertion_failures(self):
        session = self.start()
        self.ectx.policy_pcr.side_effect = TSS2_Exception(
            TPM2_RC.VALUE + TPM2_RC.P + TPM2_RC.RC1
        )
        with self.assertRaises(DeviceError) as e:
            session.policy_pcr(PCRSelection("sha256", (7,)))
        self.assertTrue(
            str(e.exception).startswith("unable to bind PCRs to auth policy: ")
        )

        self.ectx.policy_password.side_effect = TSS2_Exception(
            TPM2_RC.POLICY_FAIL + TPM2_RC.S + TPM2_RC.RC1
        )
        with self.assertRaises(AuthorizationError) as e:
            session.policy_password()
        self.assertTrue(
            str(e.exception).startswith("unable to require password for auth policy: ")
        )
        self.assertEqual(session.assertions, [])

    def test_consume_once(self):
        session = self.start()
        self.assertEqual(session.consume(), mock.sentinel.session)
        self.assertEqual(session.state, SessionState.CONSUMED)
        with self.assertRaises(RuntimeError):
            session.consume()
        with self.assertRaises(RuntimeError):
            session.policy_password()
        with self.assertRaises(RuntimeError):
            session.get_digest()

    def test_flush_once(self):
        session = self.start()
        session.consume()
        session.flush()
        session.flush()
        self.ectx.flush_context.assert_called_once_with(mock.sentinel.session)
        self.assertEqual(session.state, SessionState.FLUSHED)
        with self.assertRaises(RuntimeError):
            session.policy_password()

    def test_flush_failure_not_retried(self):
        session = self.start()
        self.ectx.flush_context.side_effect = TSS2_Exception(
            TPM2_RC.HANDLE + TPM2_RC.P + TPM2_RC.RC1
        )
        with self.assertRaises(DeviceError) as e:
            session.flush()
        self.assertTrue(str(e.exception).startswith("unable to flush session: "))
        session.flush()
        self.assertEqual(self.ectx.flush_context.call_count, 1)

    def test_context_manager(self):
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UnboundSessionWarning)
            with PolicySession(self.transport) as session:
                session.policy_password()
        self.assertEqual(session.state, SessionState.FLUSHED)
        self.assertEqual(
            self.called(),
            ["start_auth_session", "policy_password", "flush_context"],
        )

    def test_context_manager_error(self):
        session = self.start()
        with self.assertRaises(ValueError):
            with session:
                raise ValueError("bug")
        self.ectx.flush_context.assert_called_once_with(mock.sentinel.session)


if __name__ == "__main__":
    unittest.main()
