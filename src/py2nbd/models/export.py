"""
Export metadata returned by the server during negotiation.
"""

from dataclasses import dataclass
from typing import List

from py2nbd.core.nbd_protocol import TransmissionFlag


@dataclass(frozen=True)
class ExportInfo:
    """
    Size and transmission flags of the selected export.

    Attributes:
        name: Export name as requested
        size: Export size in bytes
        flags: Raw 16-bit transmission flags

    Example:
        >>> info = ExportInfo("disk0", 1048576, 0x3)
        >>> info.read_only
        True
    """

    name: str
    size: int
    flags: int = 0

    def has(self, flag: TransmissionFlag) -> bool:
        return bool(self.flags & flag)

    @property
    def has_flags(self) -> bool:
        return self.has(TransmissionFlag.HAS_FLAGS)

    @property
    def read_only(self) -> bool:
        return self.has(TransmissionFlag.READ_ONLY)

    @property
    def send_flush(self) -> bool:
        return self.has(TransmissionFlag.SEND_FLUSH)

    @property
    def send_fua(self) -> bool:
        return self.has(TransmissionFlag.SEND_FUA)

    @property
    def rotational(self) -> bool:
        return self.has(TransmissionFlag.ROTATIONAL)

    @property
    def send_trim(self) -> bool:
        return self.has(TransmissionFlag.SEND_TRIM)

    @property
    def send_write_zeroes(self) -> bool:
        return self.has(TransmissionFlag.SEND_WRITE_ZEROES)

    @property
    def send_df(self) -> bool:
        return self.has(TransmissionFlag.SEND_DF)

    @property
    def send_close(self) -> bool:
        return self.has(TransmissionFlag.SEND_CLOSE)

    def flag_names(self) -> List[str]:
        """Names of the set transmission flags, lowest bit first."""
        return [flag.name for flag in TransmissionFlag if self.flags & flag]

    def __str__(self) -> str:
        flags = ", ".join(self.flag_names()) or "none"
        return f"{self.name}: {self.size} bytes (flags: {flags})"
