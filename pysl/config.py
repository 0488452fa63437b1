"""Compiler configuration."""

from dataclasses import dataclass, field
from typing import Dict, List


@dataclass
class Config:
    # directory where kernel .wgsl files are written; imports/ lives inside it
    output: str = "shaders"

    # comma-separated function names that are never translated
    exclude: str = "Update,Defaults"

    # maximum bytes addressable by one storage buffer; larger tensors are split
    max_buffer_size: int = 2147483616

    # maxStorageBuffersPerShaderStage guaranteed by every backend
    max_storage_buffers: int = 10

    workgroup_size: int = 64

    debug: bool = False

    # keep the intermediate imports/ files after translation
    keep: bool = False

    # run naga / tint on generated kernels when they are installed
    validate: bool = True

    # short names of imported packages, stripped as pkg. prefixes
    import_packages: List[str] = field(default_factory=list)

    @property
    def exclude_map(self) -> Dict[str, bool]:
        return {fn.strip(): True for fn in self.exclude.split(",") if fn.strip()}
