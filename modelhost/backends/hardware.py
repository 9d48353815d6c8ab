"""GPU discovery and compute capability lookup."""

from typing import Dict, List, Optional

import structlog
import torch

logger = structlog.get_logger("backends.hardware")


class GPUDetector:
    """Detects CUDA devices and their compute capabilities.

    Parameters
    - capabilities: Explicit ``{device_id: capability}`` mapping. When given,
      CUDA is not inspected at all (useful on hosts where torch cannot see
      the devices the runtime will use).
    """

    def __init__(self, capabilities: Optional[Dict[int, float]] = None):
        self._capabilities: Dict[int, float] = dict(capabilities or {})
        self._detection_complete = capabilities is not None

    def detect_gpus(self) -> Dict[int, float]:
        """Detect available CUDA devices."""
        if self._detection_complete:
            return self._capabilities

        capabilities: Dict[int, float] = {}
        try:
            if torch.cuda.is_available():
                for device_id in range(torch.cuda.device_count()):
                    major, minor = torch.cuda.get_device_capability(device_id)
                    capabilities[device_id] = major + minor / 10.0
        except Exception as e:
            logger.error("GPU detection failed", error=str(e))
            capabilities = {}

        self._capabilities = capabilities
        self._detection_complete = True

        logger.info(
            "GPU detection completed",
            gpu_count=len(capabilities),
            capabilities=capabilities
        )
        return self._capabilities

    def gpu_ids(self) -> List[int]:
        """Sorted ids of detected devices."""
        return sorted(self.detect_gpus())

    def compute_capability(self, device_id: int) -> Optional[float]:
        """Compute capability of ``device_id``, or ``None`` if it is absent."""
        return self.detect_gpus().get(device_id)


# Global GPU detector instance
_gpu_detector: Optional[GPUDetector] = None


def get_gpu_detector() -> GPUDetector:
    """Get or create GPU detector instance."""
    global _gpu_detector
    if _gpu_detector is None:
        _gpu_detector = GPUDetector()
    return _gpu_detector
