"""Canonical point identifiers derived from trail mile.

    at-main-mi<token>    token = round(mile * 1000), zero-padded to 7 digits

2190.3 -> at-main-mi2190300. Seven digits cover miles up to 9999.999; a longer
trail needs a wider token. Collision detection across a dataset is the
migration's job, not the codec's.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any


class IdentityEncodingError(ValueError):
    pass


@dataclass(frozen=True)
class IdentityCodec:
    trail_code: str = "at"
    alignment: str = "main"
    scale: int = 1000
    width: int = 7

    @property
    def prefix(self) -> str:
        return f"{self.trail_code}-{self.alignment}-mi"

    @property
    def max_token(self) -> int:
        return 10 ** self.width - 1

    def token(self, mile: Any) -> str:
        if isinstance(mile, bool):
            raise IdentityEncodingError(f"Bad mile value: {mile!r}")
        try:
            value = float(mile)
        except (TypeError, ValueError):
            raise IdentityEncodingError(f"Bad mile value: {mile!r}")
        if not math.isfinite(value):
            raise IdentityEncodingError(f"Bad mile value: {mile!r}")
        # Half-up rounding, not Python's banker's rounding.
        n = math.floor(value * self.scale + 0.5)
        if n < 0:
            raise IdentityEncodingError(f"Negative mile value: {mile!r}")
        if n > self.max_token:
            raise IdentityEncodingError(
                f"Mile {mile!r} does not fit in {self.width} digits at scale {self.scale}"
            )
        return str(n).zfill(self.width)

    def encode(self, mile: Any) -> str:
        return f"{self.prefix}{self.token(mile)}"

    def _pattern(self) -> "re.Pattern[str]":
        return re.compile(rf"^{re.escape(self.prefix)}(\d{{{self.width}}})$")

    def is_canonical(self, point_id: Any) -> bool:
        return isinstance(point_id, str) and self._pattern().match(point_id) is not None

    def mile_for(self, point_id: str) -> float:
        """Mile encoded in a canonical id (resolution 1/scale)."""
        m = self._pattern().match(str(point_id))
        if m is None:
            raise IdentityEncodingError(f"Not a canonical id: {point_id!r}")
        return int(m.group(1)) / self.scale

    def id_format(self) -> str:
        return f"{self.prefix}{'0' * self.width} (mile*{self.scale})"

    def meta(self) -> dict:
        return {
            "id_format": self.id_format(),
            "id_scale": self.scale,
            "id_alignment": self.alignment,
            "id_trail_code": self.trail_code,
        }


DEFAULT_CODEC = IdentityCodec()


def encode_mile(mile: Any) -> str:
    return DEFAULT_CODEC.encode(mile)
