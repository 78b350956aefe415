"""Provider directory collaborator.

The ledger only needs to know whether a provider exists and how to display
it; staff management lives elsewhere. Providers come from the built-in
defaults or from a JSON file:

    [
        {"provider_id": "D001", "name": "Dr. Garcia", "specialization": "General Practice"}
    ]
"""
import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field

from clinic_ledger import config


class ProviderNotFoundError(Exception):
    """Raised when a provider ID is not in the directory."""
    pass


class Provider(BaseModel):
    """Display data for one provider."""
    provider_id: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    specialization: str = Field(default="General Practice", max_length=200)


class ProviderDirectory:
    """Read-only lookup of providers by ID."""

    def __init__(self, providers: Iterable[Provider] = ()):
        self._providers: Dict[str, Provider] = {p.provider_id: p for p in providers}

    @classmethod
    def from_config(cls, entries: Optional[List[dict]] = None) -> "ProviderDirectory":
        entries = config.DEFAULT_PROVIDERS if entries is None else entries
        return cls(Provider(**entry) for entry in entries)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ProviderDirectory":
        """
        Load a directory from a JSON file.

        Args:
            path: JSON file holding a list of provider objects

        Returns:
            ProviderDirectory instance

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Provider directory not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        return cls.from_config(data)

    def get_provider(self, provider_id: str) -> Provider:
        """
        Look up a provider.

        Raises:
            ProviderNotFoundError: If the ID is unknown
        """
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ProviderNotFoundError(f"Provider {provider_id} not found")
        return provider

    def has_provider(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def list_providers(self) -> List[Provider]:
        return sorted(self._providers.values(), key=lambda p: p.provider_id)

    def __len__(self) -> int:
        return len(self._providers)
