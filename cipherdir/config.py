import os, pathlib
from typing import Mapping, Optional

from pydantic import BaseModel, Field

from .logging import default_log_path
from .models import KdfParams

TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Runtime settings for the command-line shell; the engine itself only sees `kdf`."""
    kdf: KdfParams = Field(default_factory=KdfParams)
    log_path: pathlib.Path = Field(default_factory=default_log_path)
    debug: bool = False


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from CIPHERDIR_* environment variables, validating KDF bounds."""
    env = os.environ if environ is None else environ
    kdf_overrides = {}
    for var, field in (
        ("CIPHERDIR_KDF_TIME_COST", "time_cost"),
        ("CIPHERDIR_KDF_MEMORY_KIB", "memory_cost"),
        ("CIPHERDIR_KDF_PARALLELISM", "parallelism"),
    ):
        if env.get(var):
            kdf_overrides[field] = int(env[var])
    values = {"kdf": KdfParams(**kdf_overrides)}
    if env.get("CIPHERDIR_LOG"):
        values["log_path"] = pathlib.Path(env["CIPHERDIR_LOG"]).expanduser()
    values["debug"] = env.get("CIPHERDIR_DEBUG", "").strip().lower() in TRUTHY
    return Settings(**values)
