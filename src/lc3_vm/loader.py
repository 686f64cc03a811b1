"""Program image loading.

An LC-3 image file is a sequence of big-endian 16-bit words. The first word
is the origin address; every following word is stored at consecutive
addresses from the origin. Images that would run past 0xFFFF are
truncated at the top of memory.
"""

import logging
import struct
from pathlib import Path
from typing import List, Tuple, Union

from .errors import ImageLoadError
from .state import MEMORY_SIZE, Memory

logger = logging.getLogger(__name__)


def parse_image(data: bytes, name: str = "<image>") -> Tuple[int, List[int]]:
    """Split raw image bytes into (origin, words).

    Raises:
        ImageLoadError: If the data is too short to hold the origin word
    """
    if len(data) < 2:
        raise ImageLoadError(name, "truncated header (missing origin word)")
    if len(data) % 2:
        logger.warning("%s: ignoring trailing odd byte", name)
        data = data[:-1]

    origin = struct.unpack_from(">H", data)[0]
    count = len(data) // 2 - 1
    words = list(struct.unpack_from(f">{count}H", data, 2))
    return origin, words


def load_image_bytes(data: bytes, memory: Memory, name: str = "<image>") -> Tuple[int, int]:
    """Load image bytes into memory.

    Returns:
        Tuple of (origin, number of words stored)
    """
    origin, words = parse_image(data, name)
    max_words = MEMORY_SIZE - origin
    if len(words) > max_words:
        logger.warning("%s: %d words past 0xFFFF dropped", name, len(words) - max_words)
    stored = memory.load(origin, words[:max_words])
    logger.info("loaded %s: %d words at 0x%04X", name, stored, origin)
    return origin, stored


def read_image(path: Union[str, Path], memory: Memory) -> Tuple[int, int]:
    """Read an image file and load it into memory.

    Raises:
        ImageLoadError: If the file cannot be read or is malformed
    """
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise ImageLoadError(str(path), e.strerror or str(e)) from e
    return load_image_bytes(data, memory, str(path))
