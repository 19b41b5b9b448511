"""Build-keyed AES-256-CBC decryption of content manifests.

Manifest bodies (and resource graphs) are encrypted with a key and IV that
are derived from the build version, a record count taken from the blob's
header, and the SHA-1 of the logical file name. Decrypting with the wrong
file name does not fail; it yields garbage.
"""

from __future__ import annotations

import hashlib

import structlog
from Crypto.Cipher import AES

from cascstore.crypto.jenkins import MASK32

logger = structlog.get_logger()

KEY_SIZE = 32
IV_SIZE = 16
IV_NAME_SHIFT = 73

KEYTABLE = bytes.fromhex(
    "CB08594268E7C9E7344A62B2D26622490593093E3232E8826234DDA98B4C3DF9"
    "FFF2423A3BC78B0BDC739F1A281C01F8AA7AFD0CC53898E63739E0C6CAB6582D"
    "B656FE7A1122B5DADE35F2E9E90A4570E28E1EEDAE490D919F87C63F17B91547"
    "C8967AA9489FD5310FEEB8DEFA4706FAA43426B47284BD74612B81B5810E1D2F"
    "70BFBF28109CBE0809C474553868B82BAC431DEED91BB9DEE7FFDBF34E048B70"
    "5FFE2DC84A82AD1DF068E31305328E8C4B778969AFFC85A6E35670C766ECCBE0"
    "395906BFBE6F8B83A2F8E3E7747830D9A596AD737445B407C368E881B9ECF6ED"
    "120FC9882ACEF126ABFA04BEE77C4A64F490B8F29CF48C61DA1566DF7CDE282E"
    "E6027C36FAD4D5E8017D4BDF5F379F51C516EE30A43AB9FC27964CB8C02DF842"
    "363A9952FE1FCB1AB83CD83A4905C80E4938342E132D511B7CACC9381084F64E"
    "AD45B6871D6AC2F114DEA394D0F21D8C452AFD5E8F3A1E680426BE8C797F464A"
    "B66BE299B4116F1DCE3DF9DD006963D40E747499665F28F1F9118300758C2B67"
    "78B063A5239BDF07D5EAABFBA0BDC441BBE5C8C2128D3F433159017893ECB946"
    "32FF901DEEA91B53617524671B690577248522FD8E5EA669FA9410FCC165A995"
    "6BC00BDE0B03765D01F99D7720DA36876EDE9E35E3ADEE8E22D2B444DB4673FB"
    "1751699DDF2064BCD15469A46B8FA4DB0D35AE5CF235199AE4A961DB04EB06D2"
)


def derive_key(build_version: int) -> bytes:
    """Derive the 32-byte AES key for a build.

    The running index starts at ``32 * build_version`` and becomes
    ``build_version - index`` after each byte, all in u32 arithmetic.
    """
    build_version &= MASK32
    kidx = (KEY_SIZE * build_version) & MASK32
    key = bytearray(KEY_SIZE)
    for i in range(KEY_SIZE):
        key[i] = KEYTABLE[kidx % len(KEYTABLE)]
        kidx = (build_version - kidx) & MASK32
    return bytes(key)


def derive_iv(build_version: int, record_count: int, file_name: str) -> bytes:
    """Derive the 16-byte IV for a build, record count and file name.

    Args:
        build_version: Build version from the blob header
        record_count: Header count feeding the IV step (asset count for
            manifests, skin count for resource graphs)
        file_name: Logical file name, e.g. ``TactManifest/Win_SPWin_RCN_EExt.cmf``

    Returns:
        16-byte IV
    """
    build_version &= MASK32
    name_digest = hashlib.sha1(file_name.encode('utf-8')).digest()
    step = ((build_version * record_count) & MASK32) % 7

    kidx = KEYTABLE[build_version & 0x1FF]
    iv = bytearray(IV_SIZE)
    for i in range(IV_SIZE):
        iv[i] = KEYTABLE[kidx % len(KEYTABLE)]
        kidx = (kidx + step) & MASK32
        iv[i] ^= name_digest[((kidx - IV_NAME_SHIFT) & MASK32) % len(name_digest)]
    return bytes(iv)


def decrypt_body(file_name: str, build_version: int, record_count: int, ciphertext: bytes) -> bytes:
    """AES-256-CBC decrypt with no padding.

    Args:
        file_name: Logical file name participating in the IV
        build_version: Build version from the blob header
        record_count: Header count feeding the IV step
        ciphertext: Encrypted bytes, a multiple of the AES block size

    Returns:
        Plaintext of the same length

    Raises:
        ValueError: If ciphertext is not block aligned
    """
    if len(ciphertext) % AES.block_size:
        raise ValueError(f"Ciphertext length {len(ciphertext)} is not a multiple of {AES.block_size}")

    key = derive_key(build_version)
    iv = derive_iv(build_version, record_count, file_name)
    logger.debug(
        "Decrypting manifest body",
        file_name=file_name,
        build_version=build_version,
        size=len(ciphertext),
    )
    return AES.new(key, AES.MODE_CBC, iv=iv).decrypt(ciphertext)

