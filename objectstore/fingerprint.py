import hashlib
import hmac


def compute_fingerprint(content: bytes) -> str:
    """
    Returns the integrity fingerprint of raw content.
    Format matches an S3 ETag for single-part uploads: the MD5 hex digest in double quotes.
    """
    hash_md5 = hashlib.md5()
    view = memoryview(content)
    for offset in range(0, len(view), 4096):
        hash_md5.update(view[offset:offset + 4096])
    return f'"{hash_md5.hexdigest()}"'


def verify_fingerprint(content: bytes, fingerprint: str) -> bool:
    # Accept the bare hex form too, clients often strip the quotes
    expected = fingerprint if fingerprint.startswith('"') else f'"{fingerprint}"'
    return hmac.compare_digest(compute_fingerprint(content), expected)
