# SPDX-License-Identifier: BSD-2

from tpm2_pytss.types import (
    TPMT_SYM_DEF_OBJECT,
    TPMU_SYM_KEY_BITS,
    TPMU_SYM_MODE,
    TPM2B_PUBLIC,
    TPMT_PUBLIC,
    TPMU_PUBLIC_PARMS,
    TPMS_RSA_PARMS,
    TPMT_RSA_SCHEME,
    TPMU_PUBLIC_ID,
)
from tpm2_pytss.constants import (
    TPM2_ALG,
    TPMA_OBJECT,
)

from ..exceptions import InputError


class template_attributes:
    storage = (
        TPMA_OBJECT.FIXEDTPM
        | TPMA_OBJECT.FIXEDPARENT
        | TPMA_OBJECT.SENSITIVEDATAORIGIN
        | TPMA_OBJECT.USERWITHAUTH
        | TPMA_OBJECT.RESTRICTED
        | TPMA_OBJECT.DECRYPT
        | TPMA_OBJECT.NODA
    )
    # no USERWITHAUTH: the object can only be used through its policy
    sealed = TPMA_OBJECT.FIXEDTPM | TPMA_OBJECT.FIXEDPARENT


class template_symmetric:
    aes128cfb = TPMT_SYM_DEF_OBJECT(
        algorithm=TPM2_ALG.AES,
        keyBits=TPMU_SYM_KEY_BITS(aes=128),
        mode=TPMU_SYM_MODE(aes=TPM2_ALG.CFB),
    )


# Shared SRK template from the TCG TPM v2.0 Provisioning Guidance, which is
# derived from the default EK template of the EK Credential Profile.
srk_template = TPM2B_PUBLIC(
    publicArea=TPMT_PUBLIC(
        type=TPM2_ALG.RSA,
        nameAlg=TPM2_ALG.SHA256,
        objectAttributes=template_attributes.storage,
        authPolicy=b"",
        parameters=TPMU_PUBLIC_PARMS(
            rsaDetail=TPMS_RSA_PARMS(
                symmetric=template_symmetric.aes128cfb,
                scheme=TPMT_RSA_SCHEME(scheme=TPM2_ALG.NULL),
                keyBits=2048,
                exponent=0,
            ),
        ),
        unique=TPMU_PUBLIC_ID(rsa=b"\x00" * 256),
    )
)


def sealed_template(policy_digest: bytes, name_alg: TPM2_ALG = TPM2_ALG.SHA256):
    """Template of a keyed hash object holding sealed data.

    Args:
        policy_digest (bytes): The authPolicy a session has to reproduce to unseal.
        name_alg (TPM2_ALG): The name algorithm. Defaults to SHA256.

    Returns:
        A TPM2B_PUBLIC.
    """
    templ = TPMT_PUBLIC(
        type=TPM2_ALG.KEYEDHASH,
        nameAlg=name_alg,
        objectAttributes=template_attributes.sealed,
        authPolicy=policy_digest,
    )
    templ.parameters.keyedHashDetail.scheme.scheme = TPM2_ALG.NULL
    return TPM2B_PUBLIC(templ)


def _public_area(template):
    if isinstance(template, TPM2B_PUBLIC):
        return template.publicArea
    return template


def check_storage_template(template) -> None:
    """Check a template describes a storage parent.

    A storage parent is restricted, decrypts, and cannot leave the TPM or its
    parent. Raises InputError otherwise.
    """
    area = _public_area(template)
    required = (
        TPMA_OBJECT.RESTRICTED
        | TPMA_OBJECT.DECRYPT
        | TPMA_OBJECT.FIXEDTPM
        | TPMA_OBJECT.FIXEDPARENT
    )
    attrs = area.objectAttributes
    if attrs & required != required:
        raise InputError(
            "storage template must be restricted, decrypt, fixedTPM and fixedParent"
        )
    if attrs & TPMA_OBJECT.SIGN_ENCRYPT:
        raise InputError("storage template must not be a signing key")


def check_sealed_template(template) -> None:
    """Check a template describes a sealed data object.

    Sealed data is a keyed hash object with none of the restricted, decrypt or
    sign attributes set. Raises InputError otherwise.
    """
    area = _public_area(template)
    if area.type != TPM2_ALG.KEYEDHASH:
        raise InputError("sealed data template must be a keyed hash object")
    forbidden = TPMA_OBJECT.RESTRICTED | TPMA_OBJECT.DECRYPT | TPMA_OBJECT.SIGN_ENCRYPT
    if area.objectAttributes & forbidden:
        raise InputError(
            "sealed data template must not be restricted, decrypt or sign"
        )
