"""
Detection Adapter
Wraps a person/object detector and turns its labeled detections into the
two facts the integrity engine cares about: how many people are in frame
and whether a phone is visible. Never the source of truth for policy.
"""

from dataclasses import dataclass
from typing import List, Optional
import logging

from services.errors import DeviceUnavailable

logger = logging.getLogger(__name__)

PERSON_LABEL = 'person'
PHONE_LABELS = frozenset({'cell phone', 'phone', 'mobile phone'})

PERSON_CONFIDENCE = 0.5
PHONE_CONFIDENCE = 0.4


@dataclass(frozen=True)
class Detection:
    label: str
    confidence: float


@dataclass(frozen=True)
class FrameClassification:
    face_count: int
    phone_detected: bool

    @property
    def multiple_faces(self):
        return self.face_count > 1

    @property
    def no_face(self):
        return self.face_count == 0


def classify(detections, person_confidence=PERSON_CONFIDENCE, phone_confidence=PHONE_CONFIDENCE):
    """Count confident person detections and check for a confident phone detection"""
    face_count = 0
    phone_detected = False
    for detection in detections:
        label = detection.label.lower()
        if label == PERSON_LABEL and detection.confidence > person_confidence:
            face_count += 1
        elif label in PHONE_LABELS and detection.confidence > phone_confidence:
            phone_detected = True
    return FrameClassification(face_count, phone_detected)


class YoloDetector:
    """
    Ultralytics YOLO (COCO classes) as a black-box detector.
    The model is loaded lazily so that importing this module never requires
    the vision extra.
    """

    def __init__(self, model_path='yolov8n.pt', min_confidence=0.25):
        self.model_path = model_path
        self.min_confidence = min_confidence
        self.model = None

    @property
    def loaded(self):
        return self.model is not None

    def load(self):
        if self.model is not None:
            return self
        try:
            from ultralytics import YOLO
            self.model = YOLO(self.model_path)
        except Exception as e:
            raise DeviceUnavailable(f"Detection model failed to load: {e}") from e
        logger.info(f"[YOLO] Loaded detection model {self.model_path}")
        return self

    def detect(self, frame) -> List[Detection]:
        if self.model is None:
            raise DeviceUnavailable('Detection model not loaded')

        detections = []
        for result in self.model(frame, conf=self.min_confidence, verbose=False):
            names = getattr(result, 'names', None) or {}
            boxes = getattr(result, 'boxes', None)
            if boxes is None or boxes.data is None:
                continue
            for row in boxes.data:
                *_, conf, cls_id = row.tolist()
                label = names.get(int(cls_id), str(int(cls_id)))
                detections.append(Detection(label=str(label), confidence=float(conf)))
        return detections


class DetectionAdapter:
    """
    Runs one detection tick against the latest camera frame.

    A tick is skipped (returns None) when there is no frame yet or the
    detector is unavailable or raises; a skipped tick is never a violation.
    """

    def __init__(self, detector, person_confidence=PERSON_CONFIDENCE, phone_confidence=PHONE_CONFIDENCE):
        self.detector = detector
        self.person_confidence = person_confidence
        self.phone_confidence = phone_confidence

    @property
    def available(self):
        return self.detector is not None and getattr(self.detector, 'loaded', True)

    def detect(self, frame) -> Optional[List[Detection]]:
        if frame is None or not self.available:
            return None
        try:
            return list(self.detector.detect(frame))
        except Exception as e:
            logger.debug(f"Detection tick skipped: {e}")
            return None

    def classify(self, frame) -> Optional[FrameClassification]:
        detections = self.detect(frame)
        if detections is None:
            return None
        return classify(detections, self.person_confidence, self.phone_confidence)
