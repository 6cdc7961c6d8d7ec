import hashlib, os, re, time

CONTENT_ID_PATTERN = re.compile(r"^[0-9a-f]{64}$")
ID_NONCE_SIZE = 16
MAX_NAME_BYTES = 255
MAX_EXT_LEN = 32
PLACEHOLDER_BASE = "file"


def sanitize_name(name: str) -> str:
    """Kebab-case the base name and lowercase the extension: 'My Notes.TXT' -> 'my-notes.txt'.

    Never fails for a string: a base with no usable characters becomes 'file'
    and an overlong base is cut so the whole name fits in 255 bytes.
    """
    if not isinstance(name, str):
        raise TypeError("name must be a string")
    name = name.replace("\\", "/").rsplit("/", 1)[-1]
    dot = name.rfind(".")
    base, ext = (name[:dot], name[dot:]) if dot >= 0 else (name, "")
    base = re.sub(r"[^a-zA-Z0-9]+", "-", base).strip("-").lower()
    ext = re.sub(r"[^a-zA-Z0-9]+", "", ext).lower()
    ext = "." + ext[:MAX_EXT_LEN] if ext else ""
    base = base[: MAX_NAME_BYTES - len(ext)].rstrip("-") or PLACEHOLDER_BASE
    return base + ext


def address_for(identity_material: bytes) -> str:
    """SHA-256 of the identity material as 64 lowercase hex characters."""
    return hashlib.sha256(identity_material).hexdigest()


def mint(name: str, size: int) -> str:
    """Mint a fresh content id; the random nonce makes repeated uploads of one file distinct."""
    material = b"|".join([
        sanitize_name(name).encode("utf-8"),
        str(size).encode("ascii"),
        str(time.time_ns()).encode("ascii"),
        os.urandom(ID_NONCE_SIZE),
    ])
    return address_for(material)


def is_content_id(key: str) -> bool:
    return isinstance(key, str) and CONTENT_ID_PATTERN.fullmatch(key) is not None
