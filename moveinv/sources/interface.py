# moveinv/sources/interface.py
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, TypedDict


class LocalExtraction(TypedDict, total=False):
    package_id: str
    modules: Any                  # raw local encoding, see moveinv.normalize.LocalNormalizer
    self_address: Optional[str]   # original package address, if known
    artifact_dir: str


class LocalExtractor(ABC):
    """
    Produces the raw local interface description of one package.
    Implementations raise moveinv.errors.ExtractionError on failure; anything
    else they raise is converted to one at the aggregator boundary.
    """

    @abstractmethod
    def extract(self, package_id: str) -> LocalExtraction:
        ...

    def close(self) -> None:
        pass


class RemoteSource(ABC):
    """
    Produces the raw RPC-normalized modules of one package
    ({module_key: normalized module}). Raises moveinv.errors.RpcError.
    Must be safe to call from several worker threads.
    """

    @abstractmethod
    def fetch(self, package_id: str) -> Dict[str, Any]:
        ...

    def close(self) -> None:
        pass
