"""Order-preserving partitioning of images into batches."""

from collections.abc import Sequence

from scan_diagnostics.domain.sessions import BatchRecord, ImageRef
from scan_diagnostics.errors import ConfigurationError


def split_batches(images: Sequence[ImageRef], batch_size: int) -> list[BatchRecord]:
    """Split images into contiguous batches of at most ``batch_size`` images.

    Batch ``i`` holds ``images[i * batch_size:(i + 1) * batch_size]``; only the
    last batch may be shorter. An empty input yields no batches.
    """
    if batch_size < 1:
        raise ConfigurationError(f"Batch size must be at least 1, got {batch_size}")
    return [
        BatchRecord(
            index=index,
            image_ids=[image.id for image in images[start : start + batch_size]],
        )
        for index, start in enumerate(range(0, len(images), batch_size))
    ]
