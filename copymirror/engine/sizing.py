"""Mirrored order sizing."""

from copymirror.api.fill_source import Fill
from copymirror.config import CopySettings


def compute_mirror_size(fill: Fill, settings: CopySettings) -> float:
    """
    Size of the order mirroring `fill`.

    fixed mode uses settings.fixed_size, percent mode scales the original
    size by copy_factor. A sell with sell_all_on_sell set is mirrored as a
    full liquidation of settings.liquidation_size.
    """
    if fill.side == "sell" and settings.sell_all_on_sell:
        return settings.liquidation_size
    if settings.execution_mode == "fixed":
        return settings.fixed_size
    return fill.size * settings.copy_factor
