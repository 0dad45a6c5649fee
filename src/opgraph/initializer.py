"""Variable initializer policies."""

import math
from enum import Enum
from typing import Optional

import torch


class Initializer(Enum):
    """How a variable tensor (or a new sparse row) is filled."""
    ZEROS = "zeros"
    ONES = "ones"
    CONSTANT = "constant"  # param1
    RAND = "rand"  # uniform in [param1, param2)
    RANDN = "randn"  # normal with mean param1, std param2
    RAND_XAVIER = "rand_xavier"  # uniform Xavier/Glorot, fans from the shape

    def fill(self,
             t: torch.Tensor,
             param1: float = 0.0,
             param2: float = 0.0,
             generator: Optional[torch.Generator] = None) -> torch.Tensor:
        """Fill t in place."""
        if self is Initializer.ZEROS:
            return t.zero_()
        if self is Initializer.ONES:
            return t.fill_(1)
        if self is Initializer.CONSTANT:
            return t.fill_(param1)
        if self is Initializer.RAND:
            values = torch.rand(t.shape, generator=generator, dtype=t.dtype)
            return t.copy_(values * (param2 - param1) + param1)
        if self is Initializer.RANDN:
            values = torch.randn(t.shape, generator=generator, dtype=t.dtype)
            return t.copy_(values * param2 + param1)
        # Xavier: rows are fan in, cols fan out
        if t.dim() >= 2:
            fan_in, fan_out = t.shape[0], t.shape[-1]
        else:
            fan_in = fan_out = t.numel()
        bound = math.sqrt(6.0 / max(fan_in + fan_out, 1))
        values = torch.rand(t.shape, generator=generator, dtype=t.dtype)
        return t.copy_(values * (2 * bound) - bound)
