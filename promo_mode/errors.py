"""Exception taxonomy for the promo rendering pipeline."""
from __future__ import annotations


class PromoVideoError(RuntimeError):
    """Base class for every error raised by the promo pipeline."""


class AcquisitionFailure(PromoVideoError):
    """The drawing surface or the audio device could not be obtained."""


class DecodeFailure(PromoVideoError):
    """An uploaded image could not be decoded."""


class PlaybackAutoplayBlock(PromoVideoError):
    """The voice track could not be started for capture."""


class ConcurrentRenderRejected(PromoVideoError):
    """A render was requested while another one is still active."""


class EncodingFailure(PromoVideoError):
    """The capture/mux pipeline did not produce a final artifact."""


class ResourceRevokedError(PromoVideoError):
    """A resource handle was used after it had been released."""


class WorkspaceBusyError(PromoVideoError):
    """The workspace cannot be mutated while a render is active."""


class InvalidStateTransition(PromoVideoError):
    """A render session was asked to move to a state it cannot reach."""
