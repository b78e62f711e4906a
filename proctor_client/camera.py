"""
Webcam access and audit snapshot encoding (OpenCV)
"""

import base64
import logging
import threading

import cv2

from services.errors import DeviceUnavailable

logger = logging.getLogger(__name__)

SNAPSHOT_WIDTH = 160
SNAPSHOT_HEIGHT = 120
SNAPSHOT_QUALITY = 30


class OpenCVCamera:
    """Owns one cv2.VideoCapture; release() is safe to call any number of times"""

    def __init__(self, index=0, width=320, height=240):
        self.index = index
        self.width = width
        self.height = height
        self._capture = None
        self._lock = threading.Lock()

    @property
    def is_open(self):
        return self._capture is not None

    def open(self):
        with self._lock:
            if self._capture is not None:
                return self
            capture = cv2.VideoCapture(self.index)
            if not capture.isOpened():
                capture.release()
                raise DeviceUnavailable(f"Webcam {self.index} could not be opened")
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            self._capture = capture
        logger.info(f"Webcam {self.index} opened")
        return self

    def read(self):
        """Latest frame, or None when the camera is closed or not ready"""
        with self._lock:
            if self._capture is None:
                return None
            ok, frame = self._capture.read()
        return frame if ok else None

    def release(self):
        with self._lock:
            capture, self._capture = self._capture, None
        if capture is not None:
            capture.release()
            logger.info(f"Webcam {self.index} released")


def encode_snapshot(frame, width=SNAPSHOT_WIDTH, height=SNAPSHOT_HEIGHT, quality=SNAPSHOT_QUALITY):
    """Downscale a BGR frame to a low-resolution JPEG data URL"""
    if frame is None:
        return None
    small = cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)
    ok, buffer = cv2.imencode('.jpg', small, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        return None
    return 'data:image/jpeg;base64,' + base64.b64encode(buffer.tobytes()).decode('ascii')
