"""
Party name normalization: free-text (including historical or merged party names) -> canonical name.

Resolution order: exact alias, exact canonical name, substring match against alias keys in table
order (first match wins), otherwise the input is returned unchanged so it can still be displayed.
"""
import re
from typing import Dict, Optional, Tuple

from .reference_data import ReferenceData


def _clean(name: str) -> str:
    return re.sub(r"\s+", " ", name.strip())


class PartyNameNormalizer:
    def __init__(self, reference: ReferenceData):
        self._aliases: Tuple[Tuple[str, str], ...] = reference.alias_table
        self._alias_lookup: Dict[str, str] = {}
        for alias, canonical in self._aliases:
            self._alias_lookup.setdefault(alias.casefold(), canonical)
        self._canonical = {name.casefold(): name for name in reference.party_names}

    def normalize(self, name: Optional[str]) -> str:
        if not name or not isinstance(name, str):
            return ""
        cleaned = _clean(name)
        key = cleaned.casefold()
        if key in self._alias_lookup:
            return self._alias_lookup[key]
        if key in self._canonical:
            return self._canonical[key]
        for alias, canonical in self._aliases:
            if alias.casefold() in key:
                return canonical
        return cleaned

    __call__ = normalize
