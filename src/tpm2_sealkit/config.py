# SPDX-License-Identifier: BSD-2
import json
import os
import pkgutil

CONFIG = json.loads(pkgutil.get_data(__package__, "config.json").decode())

DEFAULT_TPM_PATH = os.environ.get(
    "TPM2_SEALKIT_TPM_PATH", CONFIG.get("tpm_path", "/dev/tpm0")
)
PCR_BANK = os.environ.get("TPM2_SEALKIT_PCR_BANK", CONFIG.get("pcr_bank", "sha256"))
MAX_SEAL_SIZE = int(CONFIG.get("max_seal_size", 128))
EVICT_HIERARCHY = CONFIG.get("evict_hierarchy", "owner")
