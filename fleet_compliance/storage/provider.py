from typing import BinaryIO, Optional


class StorageProvider:
    def get_download_url(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def save(self, stream: BinaryIO | bytes, key: str) -> int:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError
