"""
Local media module for meshcall.
Acquires camera, microphone and screen sources and tracks their lifecycle.
"""

from .tracks import TrackKind, LocalMediaState, MutableAudioTrack
from .devices import CaptureStream, MediaDevices
from .controller import LocalMediaController

__all__ = [
    'TrackKind',
    'LocalMediaState',
    'MutableAudioTrack',
    'CaptureStream',
    'MediaDevices',
    'LocalMediaController'
]
