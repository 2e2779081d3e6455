"""Signal samplers producing Detection Frames"""

from .sampler import ScriptedSampler, SignalSampler, VisionSampler

__all__ = ["ScriptedSampler", "SignalSampler", "VisionSampler"]
