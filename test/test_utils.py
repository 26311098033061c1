#!/usr/bin/python3 -u
# SPDX-License-Identifier: BSD-2
import unittest

from tpm2_sealkit.constants import NO_PCR
from tpm2_sealkit.exceptions import InputError
from tpm2_sealkit.types import PCRSelection
from tpm2_sealkit.utils import (
    check_pcr,
    check_seal_data,
    format_handle,
    parse_data,
    parse_handle,
)


class TestHandles(unittest.TestCase):
    def test_parse_handle(self):
        self.assertEqual(parse_handle("parent-handle", "81000001"), 0x81000001)
        self.assertEqual(parse_handle("parent-handle", "0x81000001"), 0x81000001)
        self.assertEqual(parse_handle("parent-handle", "0X8000000A"), 0x8000000A)
        self.assertEqual(parse_handle("parent-handle", "ff"), 0xFF)

    def test_parse_handle_missing(self):
        with self.assertRaises(InputError) as e:
            parse_handle("flush-handle", "")
        self.assertEqual(str(e.exception), "invalid flag 'flush-handle': missing value")

        with self.assertRaises(InputError):
            parse_handle("flush-handle", None)

    def test_parse_handle_bad(self):
        with self.assertRaises(InputError) as e:
            parse_handle("object-handle", "xyz")
        self.assertTrue(str(e.exception).startswith("invalid flag 'object-handle': "))

        for text in ("ff_ff", "+ff", "-1", " 81000001", "0x", "0x-1"):
            with self.assertRaises(InputError):
                parse_handle("object-handle", text)

        with self.assertRaises(InputError) as e:
            parse_handle("object-handle", "100000000")
        self.assertEqual(
            str(e.exception), "invalid flag 'object-handle': exceeds 32 bits"
        )

    def test_format_handle(self):
        self.assertEqual(format_handle(0x80000000), "80000000")
        self.assertEqual(format_handle(0x81010001), "81010001")
        self.assertEqual(format_handle(0xA), "a")


class TestData(unittest.TestCase):
    def test_size_boundary(self):
        self.assertEqual(len(parse_data("ab" * 128)), 128)
        with self.assertRaises(InputError) as e:
            parse_data("ab" * 129)
        self.assertEqual(str(e.exception), "invalid flag 'data': exceeds 128 bytes")

    def test_empty(self):
        self.assertEqual(parse_data(""), b"")
        self.assertEqual(parse_data(None), b"")

    def test_not_hex(self):
        with self.assertRaises(InputError) as e:
            parse_data("zz")
        self.assertTrue(str(e.exception).startswith("invalid flag 'data': "))

        for text in ("ca fe", "caf", " cafe", "+cafe"):
            with self.assertRaises(InputError):
                parse_data(text)
        self.assertEqual(parse_data("CAfe"), b"\xca\xfe")

    def test_custom_limit(self):
        self.assertEqual(check_seal_data(b"1234", limit=4), b"1234")
        with self.assertRaises(InputError):
            check_seal_data(b"12345", limit=4)


class TestPCR(unittest.TestCase):
    def test_range(self):
        self.assertEqual(check_pcr(0), 0)
        self.assertEqual(check_pcr(23), 23)
        self.assertEqual(check_pcr("7"), 7)
        self.assertEqual(check_pcr(NO_PCR), NO_PCR)

    def test_out_of_range(self):
        for pcr in (24, -2, 100):
            with self.assertRaises(InputError) as e:
                check_pcr(pcr)
            self.assertEqual(str(e.exception), "invalid flag 'pcr': out of range")

        with self.assertRaises(InputError):
            check_pcr(NO_PCR, allow_none=False)

    def test_not_int(self):
        with self.assertRaises(InputError):
            check_pcr("seven")

    def test_selection(self):
        sel = PCRSelection.from_pcr(7, "sha256")
        self.assertEqual(sel.indices, (7,))
        self.assertFalse(sel.is_empty)
        self.assertEqual(str(sel), "sha256:7")
        tpml = sel.to_tpml()
        self.assertEqual(tpml.count, 1)

        empty = PCRSelection.from_pcr(NO_PCR)
        self.assertTrue(empty.is_empty)
        self.assertEqual(empty.to_tpml().count, 0)

        with self.assertRaises(InputError):
            PCRSelection.from_pcr(24)

    def test_selection_bank(self):
        self.assertEqual(PCRSelection.from_pcr(7, "SHA1").bank, "SHA1")
        for bank in ("sha257", "rsa", "", None):
            with self.assertRaises(InputError):
                PCRSelection.from_pcr(7, bank)
            with self.assertRaises(InputError):
                PCRSelection.from_pcr(NO_PCR, bank)

        with self.assertRaises(InputError):
            PCRSelection("foo", (7,)).to_tpml()


if __name__ == "__main__":
    unittest.main()
