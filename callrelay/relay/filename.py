"""Parse talkgroup metadata out of recorder filenames.

Recorders name their output like::

    20240131_235901_unit1__TO_4112_FROM_9981.mp3

The radio id is optional; recordings without it get ``DEFAULT_RADIO_ID``.
"""

import logging
import re

from callrelay.schemas.relay import ParsedMetadata

logger = logging.getLogger(__name__)

DEFAULT_RADIO_ID = "123456"

FILENAME_PATTERN = re.compile(r"(\d{8}_\d{6}).*__TO_(\d+)(?:_FROM_(\d+))?")


def parse_filename(filename: str) -> ParsedMetadata | None:
    """Extract timestamp, talkgroup id and radio id from a filename.

    Returns None when the name lacks the date/time prefix or the ``__TO_``
    marker.
    """
    match = FILENAME_PATTERN.search(filename)
    if match is None:
        logger.debug("Filename does not match recorder grammar: %s", filename)
        return None

    timestamp, talkgroup_id, radio_id = match.groups()
    return ParsedMetadata(
        timestamp=timestamp,
        talkgroup_id=talkgroup_id,
        radio_id=radio_id or DEFAULT_RADIO_ID,
    )
