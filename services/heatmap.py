"""
Attention Heat Map
Buckets a violation log over the session timeline for the recruiter report
"""

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import List

# Visualization-only weights, independent of the score penalties
VIOLATION_SEVERITY = {
    'multiple_faces': 3,
    'phone_detected': 3,
    'screenshot_attempt': 3,
    'tab_switch': 2,
    'copy_paste': 2,
    'looking_away': 1,
    'right_click': 1,
    'mouse_leave': 1,
}

DEFAULT_BUCKETS = 60  # 12 columns x 5 rows
NOT_FOUND = -1


@dataclass
class HeatCell:
    severity: int = 0
    count: int = 0

    def to_dict(self):
        return {'severity': self.severity, 'count': self.count}


@dataclass
class HeatMap:
    cells: List[HeatCell]
    total_duration: float
    peak_index: int = NOT_FOUND
    quiet_index: int = NOT_FOUND
    violation_count: int = 0
    breakdown: list = field(default_factory=list)

    @property
    def bucket_count(self):
        return len(self.cells)

    @property
    def bucket_seconds(self):
        if self.total_duration <= 0:
            return 0
        return self.total_duration / self.bucket_count

    def offset_label(self, index):
        return format_offset(index, self.bucket_count, self.total_duration)

    def insight(self):
        """One-line narrative used by the report view"""
        if self.violation_count == 0:
            return 'No violations detected, candidate was fully attentive throughout the session'
        if self.peak_index == NOT_FOUND:
            return ''
        text = f"Peak suspicious activity detected around {self.offset_label(self.peak_index)} into the session"
        if self.quiet_index != NOT_FOUND:
            text += f" · Candidate was attentive from {self.offset_label(self.quiet_index)}"
        return text

    def to_dict(self):
        return {
            'cells': [c.to_dict() for c in self.cells],
            'bucketCount': self.bucket_count,
            'bucketSeconds': self.bucket_seconds,
            'totalDuration': self.total_duration,
            'peakIndex': self.peak_index,
            'quietIndex': self.quiet_index,
            'insight': self.insight(),
            'breakdown': self.breakdown,
        }


def _field(violation, name):
    if isinstance(violation, dict):
        return violation.get(name)
    return getattr(violation, name, None)


def _to_datetime(value):
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    raise ValueError(f'Unsupported timestamp: {value!r}')


def _type_name(violation):
    vtype = _field(violation, 'type')
    return getattr(vtype, 'value', vtype)


def bucket_index(elapsed_seconds, total_duration, bucket_count):
    """floor(elapsed / duration * buckets), clamped to [0, buckets - 1]"""
    idx = math.floor(elapsed_seconds / total_duration * bucket_count)
    return min(bucket_count - 1, max(0, idx))


def format_offset(index, bucket_count, total_duration):
    """Start of bucket `index` as M:SS"""
    if total_duration <= 0:
        return '–'
    seconds_in = round(index / bucket_count * total_duration)
    return f"{seconds_in // 60}:{seconds_in % 60:02d}"


def violation_breakdown(violations):
    """Per-type counts, most frequent first"""
    counts = Counter(_type_name(v) for v in violations)
    return [{'type': t, 'count': c} for t, c in counts.most_common()]


def build_heatmap(violations, total_duration, bucket_count=DEFAULT_BUCKETS) -> HeatMap:
    """
    Build the severity grid for a violation log.

    Elapsed time is measured from the earliest violation timestamp (client
    clocks may not have recorded the true session start). A non-positive
    duration yields an all-zero grid with no peak or quiet bucket.
    """
    if bucket_count <= 0:
        raise ValueError('bucket_count must be positive')

    violations = list(violations or [])
    cells = [HeatCell() for _ in range(bucket_count)]
    heatmap = HeatMap(
        cells=cells,
        total_duration=total_duration,
        violation_count=len(violations),
        breakdown=violation_breakdown(violations),
    )

    if total_duration <= 0:
        return heatmap

    timestamps = [_to_datetime(_field(v, 'timestamp')) for v in violations]
    origin = min(timestamps) if timestamps else None

    for violation, ts in zip(violations, timestamps):
        elapsed = (ts - origin).total_seconds()
        cell = cells[bucket_index(elapsed, total_duration, bucket_count)]
        cell.severity += VIOLATION_SEVERITY.get(_type_name(violation), 1)
        cell.count += 1

    max_severity = 0
    for i, cell in enumerate(cells):
        if cell.severity > max_severity:
            max_severity = cell.severity
            heatmap.peak_index = i

    for i, cell in enumerate(cells):
        if cell.severity == 0:
            heatmap.quiet_index = i
            break

    return heatmap


def attention_summary(total_looking_away, total_duration):
    """Attentive share of the session, from accumulated looking-away seconds"""
    attentive = max(0, total_duration - (total_looking_away or 0))
    percent = round(attentive / total_duration * 100) if total_duration > 0 else 100
    return {
        'attentionPercent': percent,
        'attentiveSeconds': round(attentive),
        'distractionSeconds': round(total_looking_away or 0),
        'totalSeconds': round(total_duration) if total_duration > 0 else 0,
    }
