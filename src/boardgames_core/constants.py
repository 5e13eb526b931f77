from enum import Enum


class ProviderKind(Enum):
    BGG = "bgg"
    LUDOPEDIA = "ludo"

    @property
    def label(self) -> str:
        return "BoardGameGeek" if self is ProviderKind.BGG else "Ludopedia"


# Lookup order when a request asks for source=auto
SOURCE_PRIORITY = (ProviderKind.BGG, ProviderKind.LUDOPEDIA)

PAYLOAD_TTL_SECONDS = 10 * 24 * 3600
FILE_TTL_SECONDS = 168 * 3600

MAX_IMAGE_WIDTH = 1600
JPEG_QUALITY = 85
IMAGE_FORMATS = frozenset({"thumb", "full"})
FORMAT_ALIASES = {"image": "full"}
CONTENT_TYPE_SUFFIX = ".ct"
IMAGE_CACHE_CONTROL = "public, max-age=2592000, immutable"
PLACEHOLDER_URL = "https://placehold.co/400x550?text=No+Image"
