import os
from typing import Optional

from pydantic import BaseModel, Field

from .storage import FileStorage, MemoryStorage, Storage


class Settings(BaseModel):
    api_url: str = "http://localhost:8000/api/v1"
    storage_path: Optional[str] = None
    page_size: int = Field(12, ge=1)
    country: str = "Philippines"
    timeout: float = Field(10.0, gt=0)

    @classmethod
    def from_env(cls) -> "Settings":
        env = {
            "api_url": os.getenv("STOREFRONT_API"),
            "storage_path": os.getenv("STOREFRONT_STORAGE"),
            "page_size": os.getenv("STOREFRONT_PAGE_SIZE"),
            "country": os.getenv("STOREFRONT_COUNTRY"),
            "timeout": os.getenv("STOREFRONT_TIMEOUT"),
        }
        return cls(**{k: v for k, v in env.items() if v})

    def make_storage(self) -> Storage:
        if self.storage_path:
            return FileStorage(self.storage_path)
        return MemoryStorage()
