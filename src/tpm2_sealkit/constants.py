# SPDX-License-Identifier: BSD-2

# PCR index meaning "do not bind to any PCR"
NO_PCR = -1
PCR_FIRST = 0
PCR_LAST = 23

# nonceCaller for the policy sessions, its size also sets the size of nonceTPM
NONCE_CALLER = b"\x00" * 16

HANDLE_MAX = 0xFFFFFFFF
