from asset_uploader.client import AssetUploaderClient
from asset_uploader.config import UploaderSettings

__all__ = ["AssetUploaderClient", "UploaderSettings"]
