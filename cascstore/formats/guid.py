"""Packed 64-bit asset identifiers.

Bit layout, most significant first:

    63-60  engine
    59-48  type, stored bit-reversed and minus one
    47-44  platform
    43-39  region
    36-32  locale
    31-0   index
"""

from __future__ import annotations

from pydantic import BaseModel, Field

TYPE_BITS = 12


def _reverse_bits(value: int, width: int) -> int:
    result = 0
    for _ in range(width):
        result = (result << 1) | (value & 1)
        value >>= 1
    return result


class Guid(BaseModel):
    """Decomposed asset GUID."""

    engine: int = Field(default=0, ge=0, le=0xF, description="Engine field")
    type: int = Field(ge=1, le=0x1000, description="Asset type")
    platform: int = Field(default=0, ge=0, le=0xF, description="Platform field")
    region: int = Field(default=0, ge=0, le=0x1F, description="Region field")
    locale: int = Field(default=0, ge=0, le=0x1F, description="Locale field")
    index: int = Field(default=0, ge=0, le=0xFFFFFFFF, description="Asset index")

    @classmethod
    def from_raw(cls, value: int) -> Guid:
        return cls(
            engine=(value >> 60) & 0xF,
            type=_reverse_bits((value >> 48) & 0xFFF, TYPE_BITS) + 1,
            platform=(value >> 44) & 0xF,
            region=(value >> 39) & 0x1F,
            locale=(value >> 32) & 0x1F,
            index=value & 0xFFFFFFFF,
        )

    def to_raw(self) -> int:
        return (
            (self.engine << 60)
            | (_reverse_bits(self.type - 1, TYPE_BITS) << 48)
            | (self.platform << 44)
            | (self.region << 39)
            | (self.locale << 32)
            | self.index
        )

    def __str__(self) -> str:
        return f"{self.to_raw():016X}"
