from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator

from stereosurvey.calibration import CalibrationData, CalibrationValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StereoCalibrationSet:
    """
    Ordered calibration records for one survey, with an optional preferred record.

    Selection for a frame size is a pure function of (records, preferred_index, width, height):
      1. the preferred record if its resolution equals the frame size
      2. the first record whose resolution equals the frame size
      3. the record with the closest aspect ratio (ties: lowest index)
      4. the first record
    """

    records: tuple[CalibrationData, ...]
    preferred_index: int | None = None

    def __post_init__(self) -> None:
        records = tuple(self.records)
        for r in records:
            if not isinstance(r, CalibrationData):
                raise TypeError(f"expected CalibrationData, got {type(r).__name__}")
        if self.preferred_index is not None and not 0 <= int(self.preferred_index) < len(records):
            raise CalibrationValidationError(
                f"preferred_index {self.preferred_index} out of range for {len(records)} records"
            )
        object.__setattr__(self, "records", records)

    @classmethod
    def single(cls, record: CalibrationData) -> "StereoCalibrationSet":
        return cls(records=(record,), preferred_index=0)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[CalibrationData]:
        return iter(self.records)

    def __getitem__(self, i: int) -> CalibrationData:
        return self.records[i]

    def find(self, calibration_id: str) -> CalibrationData | None:
        for r in self.records:
            if r.calibration_id == calibration_id:
                return r
        return None

    def matching_indices(self, width: int, height: int) -> list[int]:
        return [i for i, r in enumerate(self.records) if r.frame_size_matches(width, height)]

    def preferred_index_for(self, width: int, height: int) -> int | None:
        if not self.records or width <= 0 or height <= 0:
            return None

        if self.preferred_index is not None and self.records[self.preferred_index].frame_size_matches(width, height):
            return self.preferred_index

        exact = self.matching_indices(width, height)
        if exact:
            return exact[0]

        target = width / height
        best: int | None = None
        best_diff = float("inf")
        for i, r in enumerate(self.records):
            ar = r.aspect_ratio
            if ar is None:
                continue
            diff = abs(ar - target)
            if diff < best_diff:
                best, best_diff = i, diff
        if best is not None:
            logger.warning(
                "No calibration record for frame size %dx%d; using record %d with resolution %s",
                width,
                height,
                best,
                self.records[best].resolution,
            )
            return best

        logger.warning("No calibration record has a known resolution; using the first record")
        return 0

    def get_preferred_calibration_data(self, width: int, height: int) -> CalibrationData | None:
        i = self.preferred_index_for(width, height)
        return None if i is None else self.records[i]
