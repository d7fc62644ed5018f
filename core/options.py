"""
Run options chosen by the analyst.

The profile lists the display text for each drop-down (e.g. "Yes - with
labels"); these enums hold the meaning of the selected entry.
"""

from enum import Enum
from typing import Optional


class AddSelectedLayersOptions(Enum):
    """Whether output layers are added to the map, and with labels."""
    NO = "no"
    WITH_LABELS = "with labels"
    WITHOUT_LABELS = "without labels"

    @classmethod
    def from_text(cls, text: Optional[str]) -> 'AddSelectedLayersOptions':
        lowered = (text or '').strip().lower()
        if lowered == 'no' or not lowered:
            return cls.NO
        if 'without labels' in lowered:
            return cls.WITHOUT_LABELS
        if 'with labels' in lowered:
            return cls.WITH_LABELS
        return cls.NO


class OverwriteLabelOptions(Enum):
    """How label numbers are assigned across layers."""
    NO = "no"
    RESET_BY_LAYER = "reset each layer"
    RESET_BY_GROUP = "reset each group"
    DO_NOT_RESET = "do not reset"

    @classmethod
    def from_text(cls, text: Optional[str]) -> 'OverwriteLabelOptions':
        lowered = (text or '').strip().lower()
        for option in (cls.RESET_BY_LAYER, cls.RESET_BY_GROUP, cls.DO_NOT_RESET):
            if option.value in lowered:
                return option
        return cls.NO


class CombinedSitesTableOptions(Enum):
    """Whether the combined sites table is created, appended to or overwritten."""
    NONE = "none"
    APPEND = "append"
    OVERWRITE = "overwrite"

    @classmethod
    def from_text(cls, text: Optional[str]) -> 'CombinedSitesTableOptions':
        lowered = (text or '').strip().lower()
        if 'append' in lowered:
            return cls.APPEND
        if 'overwrite' in lowered:
            return cls.OVERWRITE
        return cls.NONE
