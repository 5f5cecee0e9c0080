"""Audio devices and speech engines (sounddevice, Piper, faster-whisper).

Imported lazily so the rest of the package works without audio hardware.
"""
