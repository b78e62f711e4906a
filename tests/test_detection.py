"""
Test detection adapter and webcam helpers
"""
import base64
import sys
import types

import cv2
import numpy as np
import pytest

from services.errors import DeviceUnavailable
from proctor_client import camera as camera_module
from proctor_client.camera import OpenCVCamera, encode_snapshot
from proctor_client.detection import Detection, DetectionAdapter, YoloDetector, classify


class FakeDetector:
    loaded = True

    def __init__(self, detections=None, error=None):
        self.detections = detections or []
        self.error = error
        self.calls = 0

    def detect(self, frame):
        self.calls += 1
        if self.error:
            raise self.error
        return self.detections


class TestClassify:
    """Test confidence thresholds"""

    def test_counts_people_above_threshold(self):
        result = classify([
            Detection('person', 0.9),
            Detection('person', 0.51),
            Detection('person', 0.5),  # not strictly above
            Detection('chair', 0.99),
        ])
        assert result.face_count == 2
        assert result.multiple_faces
        assert not result.phone_detected

    def test_phone_labels(self):
        assert classify([Detection('cell phone', 0.41)]).phone_detected
        assert classify([Detection('Mobile Phone', 0.8)]).phone_detected
        assert not classify([Detection('cell phone', 0.4)]).phone_detected

    def test_empty_frame(self):
        result = classify([])
        assert result.no_face
        assert not result.multiple_faces
        assert not result.phone_detected


class TestDetectionAdapter:
    """Test skipped ticks"""

    def test_no_frame_skips(self):
        detector = FakeDetector([Detection('person', 0.9)])
        adapter = DetectionAdapter(detector)
        assert adapter.classify(None) is None
        assert detector.calls == 0

    def test_detector_error_skips(self):
        adapter = DetectionAdapter(FakeDetector(error=RuntimeError('inference failed')))
        assert adapter.classify(np.zeros((4, 4, 3), dtype=np.uint8)) is None

    def test_missing_detector(self):
        adapter = DetectionAdapter(None)
        assert not adapter.available
        assert adapter.classify(np.zeros((4, 4, 3), dtype=np.uint8)) is None

    def test_unloaded_detector_unavailable(self):
        assert not DetectionAdapter(YoloDetector()).available

    def test_classifies_frame(self):
        adapter = DetectionAdapter(FakeDetector([Detection('person', 0.9), Detection('cell phone', 0.7)]))
        result = adapter.classify(np.zeros((4, 4, 3), dtype=np.uint8))
        assert result.face_count == 1
        assert result.phone_detected


class FakeBoxes:
    def __init__(self, rows):
        self.data = np.array(rows, dtype=np.float32)


class FakeResult:
    names = {0: 'person', 67: 'cell phone'}

    def __init__(self, rows):
        self.boxes = FakeBoxes(rows)


class TestYoloDetector:
    """Test the ultralytics wrapper without a real model"""

    def test_detect_before_load(self):
        with pytest.raises(DeviceUnavailable):
            YoloDetector().detect(np.zeros((4, 4, 3), dtype=np.uint8))

    def test_load_failure(self, monkeypatch):
        fake = types.ModuleType('ultralytics')

        def broken_yolo(path):
            raise FileNotFoundError(path)

        fake.YOLO = broken_yolo
        monkeypatch.setitem(sys.modules, 'ultralytics', fake)

        detector = YoloDetector('missing.pt')
        with pytest.raises(DeviceUnavailable):
            detector.load()
        assert not detector.loaded

    def test_detect_reads_boxes(self, monkeypatch):
        calls = {}

        def model(frame, conf, verbose):
            calls['conf'] = conf
            return [FakeResult([
                [0, 0, 10, 10, 0.88, 0],
                [5, 5, 8, 8, 0.61, 67],
            ])]

        fake = types.ModuleType('ultralytics')
        fake.YOLO = lambda path: model
        monkeypatch.setitem(sys.modules, 'ultralytics', fake)

        detector = YoloDetector(min_confidence=0.3).load()
        detections = detector.detect(np.zeros((4, 4, 3), dtype=np.uint8))

        assert calls['conf'] == 0.3
        assert [d.label for d in detections] == ['person', 'cell phone']
        assert detections[0].confidence == pytest.approx(0.88)


class TestCamera:
    """Test webcam lifecycle and snapshot encoding"""

    def test_open_failure(self, monkeypatch):
        released = []

        class ClosedCapture:
            def __init__(self, index):
                pass

            def isOpened(self):
                return False

            def release(self):
                released.append(True)

        monkeypatch.setattr(camera_module.cv2, 'VideoCapture', ClosedCapture)
        camera = OpenCVCamera()
        with pytest.raises(DeviceUnavailable):
            camera.open()
        assert released == [True]
        assert not camera.is_open
        assert camera.read() is None

    def test_release_is_idempotent(self, monkeypatch):
        released = []

        class OpenCapture:
            def __init__(self, index):
                pass

            def isOpened(self):
                return True

            def set(self, prop, value):
                pass

            def read(self):
                return True, np.zeros((240, 320, 3), dtype=np.uint8)

            def release(self):
                released.append(True)

        monkeypatch.setattr(camera_module.cv2, 'VideoCapture', OpenCapture)
        camera = OpenCVCamera().open()
        assert camera.read().shape == (240, 320, 3)
        camera.release()
        camera.release()
        assert released == [True]
        assert camera.read() is None

    def test_encode_snapshot(self):
        url = encode_snapshot(np.zeros((240, 320, 3), dtype=np.uint8))
        assert url.startswith('data:image/jpeg;base64,')

        raw = base64.b64decode(url.split(',', 1)[1])
        image = cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_COLOR)
        assert image.shape == (120, 160, 3)

    def test_encode_no_frame(self):
        assert encode_snapshot(None) is None
