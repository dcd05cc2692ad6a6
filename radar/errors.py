"""
REBOUND RADAR ERROR TAXONOMY
------------------------------------------------------------------------------
None of these are fatal to the engine process.
"""

from typing import List


class RadarError(Exception):
    """Base class for recoverable engine errors."""


class FetchFailure(RadarError):
    """Ranking or price source unreachable, or returned malformed data."""


class PersistenceFailure(RadarError):
    """Snapshot write or read failed. In-memory state stays authoritative."""


class ConfigInvalid(RadarError):
    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))
