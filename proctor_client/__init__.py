from proctor_client.api import LedgerClient, LedgerRejected
from proctor_client.camera import OpenCVCamera, encode_snapshot
from proctor_client.detection import Detection, DetectionAdapter, FrameClassification, YoloDetector
from proctor_client.live import connect_live
from proctor_client.monitor import MonitorStatus, ProctoringMonitor
from proctor_client.reporter import ViolationReporter
from proctor_client.signals import QueueSignalSource, SignalEvent, SignalMonitor, SignalSource

__all__ = [
    'LedgerClient', 'LedgerRejected',
    'OpenCVCamera', 'encode_snapshot',
    'Detection', 'DetectionAdapter', 'FrameClassification', 'YoloDetector',
    'connect_live',
    'MonitorStatus', 'ProctoringMonitor',
    'ViolationReporter',
    'QueueSignalSource', 'SignalEvent', 'SignalMonitor', 'SignalSource',
]
