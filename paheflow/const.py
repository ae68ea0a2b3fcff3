CHARACTER_MAP = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ+/"

DIRECT_MARKER = "!!TRUE!!"
PAGED_MARKER = "!!FALSE!!"

SERVER_LABEL = "KWIK"

# Width of the padding wrapped around the ad-gate payload before base64 encoding.
ADFLY_FRAME_WIDTH = 16

ADFLY_TARGET_STATUS = 200
KWIK_TARGET_STATUS = 302

SUPPORTED_REQUEST_HEADERS = [
    "accept",
    "accept-encoding",
    "accept-language",
    "user-agent",
    "referer",
    "origin",
]
