from .session import CancellationToken, CaptureSession

__all__ = ["CancellationToken", "CaptureSession"]
