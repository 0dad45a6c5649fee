"""Engine configuration."""

import os
from dataclasses import dataclass
from typing import Optional

import torch


_DTYPES = {
    "float32": torch.float32,
    "float64": torch.float64,
    "float16": torch.float16,
    "bfloat16": torch.bfloat16,
}


@dataclass
class EngineConfig:
    """Runtime settings shared by graphs and op contexts."""
    dtype: str = "float32"  # Storage dtype of dense tensors
    device: str = "cpu"
    seed: Optional[int] = None  # Seed for variable initializers
    validate_bindings: bool = True  # Check instance shapes on every forward

    def __post_init__(self):
        if self.dtype not in _DTYPES:
            raise ValueError(
                f"Unsupported dtype {self.dtype!r}, expected one of {sorted(_DTYPES)}"
            )

    @property
    def torch_dtype(self) -> torch.dtype:
        return _DTYPES[self.dtype]

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """
        Build a config from OPGRAPH_* environment variables.

        Recognized: OPGRAPH_DTYPE, OPGRAPH_DEVICE, OPGRAPH_SEED.
        """
        seed = os.environ.get("OPGRAPH_SEED")
        return cls(
            dtype=os.environ.get("OPGRAPH_DTYPE", "float32"),
            device=os.environ.get("OPGRAPH_DEVICE", "cpu"),
            seed=int(seed) if seed else None,
        )


_default_config = EngineConfig()


def get_default_config() -> EngineConfig:
    """Get the process-wide default config."""
    return _default_config
