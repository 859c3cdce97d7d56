"""Compute device detection and process-wide selection.

The device is chosen once (``get_device``) and read thereafter. Every
constructor that places tensors also accepts an explicit ``device`` so tests
and multi-device setups can bypass the process-wide choice.
"""

import platform
from typing import Any, Dict, List, Optional, Union
import torch
import structlog

logger = structlog.get_logger("device")

DeviceLike = Union[str, torch.device]


class GPUDetector:
    """Detects available accelerators and recommends a device."""

    def __init__(self):
        self.gpu_info: Dict[str, Any] = {}
        self.available_devices: List[str] = []
        self.current_device: Optional[str] = None
        self._detection_complete = False

    def detect_gpus(self) -> Dict[str, Any]:
        """Detect available GPU resources."""
        if self._detection_complete:
            return self.gpu_info

        gpu_info = {
            "platform": platform.system(),
            "architecture": platform.machine(),
            "cuda_available": False,
            "mps_available": False,  # Apple Metal Performance Shaders
            "gpu_count": 0,
            "devices": [],
            "recommended_device": "cpu"
        }

        try:
            if torch.cuda.is_available():
                gpu_info["cuda_available"] = True
                gpu_info["gpu_count"] = torch.cuda.device_count()

                for i in range(gpu_info["gpu_count"]):
                    device_props = torch.cuda.get_device_properties(i)
                    gpu_info["devices"].append({
                        "id": i,
                        "name": device_props.name,
                        "memory_total": device_props.total_memory,
                        "compute_capability": f"{device_props.major}.{device_props.minor}",
                        "type": "cuda"
                    })
                    self.available_devices.append(f"cuda:{i}")

                gpu_info["recommended_device"] = "cuda:0"

            elif hasattr(torch.backends, 'mps') and torch.backends.mps.is_available():
                gpu_info["mps_available"] = True
                gpu_info["gpu_count"] = 1
                gpu_info["devices"].append({
                    "id": 0,
                    "name": "Apple GPU",
                    "compute_capability": "mps",
                    "type": "mps"
                })
                self.available_devices.append("mps")
                gpu_info["recommended_device"] = "mps"

        except (RuntimeError, AssertionError) as e:
            logger.error("GPU detection failed", error=str(e))
            gpu_info["recommended_device"] = "cpu"

        if "cpu" not in self.available_devices:
            self.available_devices.append("cpu")

        self.gpu_info = gpu_info
        self._detection_complete = True

        logger.info(
            "GPU detection completed",
            cuda_available=gpu_info["cuda_available"],
            mps_available=gpu_info["mps_available"],
            gpu_count=gpu_info["gpu_count"],
            recommended_device=gpu_info["recommended_device"]
        )

        return gpu_info

    def select_device(self, preference: str = "auto") -> str:
        """Select the best available device for ``auto``, ``cpu`` or ``gpu``."""
        if not self._detection_complete:
            self.detect_gpus()

        if preference == "cpu":
            self.current_device = "cpu"
        elif preference == "gpu":
            if self.gpu_info["cuda_available"]:
                self.current_device = "cuda:0"
            elif self.gpu_info["mps_available"]:
                self.current_device = "mps"
            else:
                logger.warning("GPU requested but not available, falling back to CPU")
                self.current_device = "cpu"
        elif preference == "auto":
            self.current_device = self.gpu_info["recommended_device"]
        else:
            # Explicit device string such as ``cuda:1``
            self.current_device = preference

        logger.info("Device selected", device=self.current_device, preference=preference)
        return self.current_device

    def clear_cache(self, device: DeviceLike):
        """Release cached allocator memory on accelerators."""
        device = str(device)
        if device.startswith("cuda"):
            torch.cuda.empty_cache()
            logger.info("CUDA cache cleared", device=device)
        elif device == "mps" and hasattr(torch, "mps") and hasattr(torch.mps, "empty_cache"):
            torch.mps.empty_cache()
            logger.info("MPS cache cleared", device=device)


# Global detector and the device chosen from it
_gpu_detector: Optional[GPUDetector] = None
_device: Optional[torch.device] = None


def get_gpu_detector() -> GPUDetector:
    """Get or create GPU detector instance."""
    global _gpu_detector
    if _gpu_detector is None:
        _gpu_detector = GPUDetector()
    return _gpu_detector


def init_device(preference: str = "auto") -> torch.device:
    """Select the process-wide device. Meant to run once at startup."""
    global _device
    _device = torch.device(get_gpu_detector().select_device(preference))
    return _device


def get_device(preference: str = "auto") -> torch.device:
    """Return the process-wide device.

    ``preference`` only applies on first use, when nothing was selected yet;
    later calls return the cached device whatever they pass.
    """
    if _device is None:
        return init_device(preference)
    return _device


def resolve_device(device: Optional[DeviceLike] = None) -> torch.device:
    """Return ``device`` as a ``torch.device``, or the process-wide default."""
    if device is None:
        return get_device()
    return torch.device(device)
